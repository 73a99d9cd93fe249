# clocksync/trace.py
"""Structured record of everything the simulated nodes do.

Each event names the node, the clock value at that moment and what happened.
Events are kept in memory, optionally appended to ``trace.jsonl`` (one JSON
object per line) and pushed to any registered listener, e.g. a websocket.
"""
import itertools
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional

from .clock import ClockValue

logger = logging.getLogger("clocksync.trace")

EVENT_KINDS = ("local", "send", "recv", "idle", "drop")


@dataclass(frozen=True)
class TraceEvent:
    seq: int
    node: int
    kind: str
    clock: ClockValue
    iteration: Optional[int] = None
    peer: Optional[int] = None
    payload: Optional[str] = None
    sent_clock: Optional[ClockValue] = None

    def to_dict(self):
        d = asdict(self)
        for key in ("clock", "sent_clock"):
            if isinstance(d[key], tuple):
                d[key] = list(d[key])
        return d

    @classmethod
    def from_dict(cls, d):
        d = dict(d)
        for key in ("clock", "sent_clock"):
            if isinstance(d.get(key), list):
                d[key] = tuple(d[key])
        return cls(**d)

    def describe(self):
        if self.kind == "local":
            return f"Generated local event {self.iteration}"
        if self.kind == "send":
            return f"Sending message {self.payload} to node {self.peer}"
        if self.kind == "recv":
            return f"Received message {self.payload} from node {self.peer} with timestamp {_fmt(self.sent_clock)}"
        if self.kind == "drop":
            if self.peer is None:
                return f"No peer to receive message {self.payload}"
            return f"Failed to deliver message {self.payload} to node {self.peer}"
        return "Doing nothing"


def _fmt(value):
    if isinstance(value, tuple):
        return list(value)
    return value


class EventTrace:
    def __init__(self, log_dir: Optional[str] = None, file_name: str = "trace.jsonl"):
        self.events: List[TraceEvent] = []
        self.listeners: List[Callable[[dict], None]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self.log_path = None
        if log_dir is not None:
            os.makedirs(log_dir, exist_ok=True)
            self.log_path = os.path.join(log_dir, file_name)
            open(self.log_path, "w").close()

    def record(self, node: int, kind: str, clock: ClockValue, **detail) -> TraceEvent:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown trace event kind {kind!r}")
        with self._lock:
            event = TraceEvent(seq=next(self._seq), node=node, kind=kind, clock=clock, **detail)
            self.events.append(event)
            if self.log_path is not None:
                with open(self.log_path, "a") as f:
                    f.write(json.dumps(event.to_dict()) + "\n")
        level = logging.WARNING if kind == "drop" else logging.INFO
        logger.log(level, event.describe(), extra={"node_id": node, "logical_clock": _fmt(clock)})
        self._push(event.to_dict())
        return event

    def for_node(self, node: int) -> List[TraceEvent]:
        return [e for e in self.events if e.node == node]

    def of_kind(self, kind: str) -> List[TraceEvent]:
        return [e for e in self.events if e.kind == kind]

    # --- listener support ---
    def register_listener(self, cb):
        if cb not in self.listeners:
            self.listeners.append(cb)

    def unregister_listener(self, cb):
        if cb in self.listeners:
            self.listeners.remove(cb)

    def _push(self, record):
        for cb in list(self.listeners):
            try:
                cb(record)
            except Exception:
                logger.exception("trace listener %r failed", cb)


def load_trace(path) -> List[TraceEvent]:
    events = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line:
                events.append(TraceEvent.from_dict(json.loads(line)))
    return events
