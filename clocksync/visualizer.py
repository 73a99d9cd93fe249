# clocksync/visualizer.py
import os

import matplotlib.pyplot as plt

from .trace import load_trace

# inches; matplotlib refuses images wider than 2**16 pixels
MAX_WIDTH = 200
MAX_HEIGHT = 100


KIND_STYLE = {
    "local": ("o", "tab:blue"),
    "send": ("^", "tab:orange"),
    "recv": ("v", "tab:green"),
    "idle": (".", "tab:gray"),
    "drop": ("x", "tab:red"),
}


def figure_size(n_events, n_nodes):
    return (min(MAX_WIDTH, max(8, n_events * 0.4)), min(MAX_HEIGHT, 1.5 + n_nodes))


def _label(clock):
    if isinstance(clock, tuple):
        return "[" + ",".join(str(c) for c in clock) + "]"
    return str(clock)


def plot_space_time(trace_path="logs/trace.jsonl", out_path="logs/space_time.png", show_idle=False, max_events=None):
    # One lane per node, x is the trace order; arrows join each send to its receive
    if not os.path.exists(trace_path):
        print("Trace not found:", trace_path)
        return None
    events = load_trace(trace_path)
    if not show_idle:
        events = [e for e in events if e.kind != "idle"]
    if max_events:
        events = events[:max_events]
    if not events:
        print("No events found in trace.")
        return None

    nodes = sorted({e.node for e in events})
    lane = {n: i for i, n in enumerate(nodes)}
    position = {e.seq: (x, lane[e.node]) for x, e in enumerate(events)}

    plt.figure(figsize=figure_size(len(events), len(nodes)))
    for n in nodes:
        plt.axhline(lane[n], color="lightgray", linewidth=1, zorder=0)

    for e in events:
        marker, color = KIND_STYLE[e.kind]
        x, y = position[e.seq]
        plt.scatter([x], [y], marker=marker, color=color, zorder=2)
        plt.text(x, y + 0.12, _label(e.clock), fontsize=7, ha="center")

    # pair sends with receives on the same edge, in order
    pending = {}
    for e in events:
        if e.kind == "send":
            pending.setdefault((e.node, e.peer, e.payload), e)
    for e in events:
        if e.kind != "recv":
            continue
        send = pending.pop((e.peer, e.node, e.payload), None)
        if send is None:
            continue
        (x0, y0), (x1, y1) = position[send.seq], position[e.seq]
        plt.annotate("", xy=(x1, y1), xytext=(x0, y0), arrowprops=dict(arrowstyle="->", color="tab:purple", alpha=0.6))

    plt.yticks(range(len(nodes)), [f"node {n}" for n in nodes])
    plt.xticks([])
    plt.xlabel("Trace order")
    plt.title("Space-time diagram")
    plt.tight_layout()
    out_dir = os.path.dirname(out_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    plt.savefig(out_path)
    plt.close()
    print(f"Saved plot to {out_path}")
    return out_path
