import matplotlib

# tests never open a window
matplotlib.use("Agg")
