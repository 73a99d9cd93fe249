# clocksync/logger.py
import logging
import os

LOG_FORMAT = "Node %(node_id)s | Local Time: %(logical_clock)s | %(message)s | %(asctime)s | %(levelname)s"


class NodeContextFilter(logging.Filter):
    """Make sure every record carries node and logical clock fields."""

    def filter(self, record):
        if not hasattr(record, "node_id"):
            record.node_id = "-"
        if not hasattr(record, "logical_clock"):
            record.logical_clock = "-"
        return True


def setup_logger(log_level=logging.INFO, log_dir=None, file_mode="w", stream=None):
    logger = logging.getLogger("clocksync")
    logger.setLevel(log_level)

    # Clear handlers from a previous setup so lines are not duplicated
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    for f in logger.filters[:]:
        logger.removeFilter(f)

    formatter = logging.Formatter(LOG_FORMAT)
    context = NodeContextFilter()

    stream_handler = logging.StreamHandler(stream)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(context)
    logger.addHandler(stream_handler)

    if log_dir is not None:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, "clocksync.log"), mode=file_mode)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(context)
        logger.addHandler(file_handler)

    return logger
