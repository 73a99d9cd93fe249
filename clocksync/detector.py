# clocksync/detector.py
import json
import os
from typing import Dict, Iterable, List, Optional, Tuple

from .clock import dominates, happened_before
from .trace import TraceEvent, load_trace

ADVANCING = ("local", "send", "recv")


class CausalityChecker:
    """Replays a trace and reports every place it breaks logical time.

    Anomalies are plain dicts with a ``type`` key; when ``log_path`` is set
    each one is also appended to that JSONL file.
    """

    def __init__(self, log_path: Optional[str] = None):
        self.log_path = log_path
        if log_path is not None:
            log_dir = os.path.dirname(log_path)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            # ensure anomalies file exists
            open(self.log_path, "a").close()

    def check_file(self, trace_path) -> List[dict]:
        return self.check(load_trace(trace_path))

    def check(self, events: Iterable[TraceEvent]) -> List[dict]:
        events = sorted(events, key=lambda e: e.seq)
        anomalies = []
        anomalies += self.check_monotonic(events)
        anomalies += self.check_receives(events)
        anomalies += self.check_fifo(events)
        for anomaly in anomalies:
            self._record(anomaly)
        return anomalies

    def check_monotonic(self, events: List[TraceEvent]) -> List[dict]:
        anomalies = []
        last: Dict[int, TraceEvent] = {}
        for e in events:
            prev = last.get(e.node)
            last[e.node] = e
            if prev is None:
                continue
            if e.kind in ADVANCING:
                ok = happened_before(prev.clock, e.clock)
            else:
                ok = dominates(e.clock, prev.clock)
            if not ok:
                anomalies.append({"type": "non_monotonic", "node": e.node, "before": prev.to_dict(), "at": e.to_dict()})
        return anomalies

    def check_receives(self, events: List[TraceEvent]) -> List[dict]:
        anomalies = []
        for e in events:
            if e.kind != "recv":
                continue
            if not dominates(e.clock, e.sent_clock):
                anomalies.append({"type": "merge_not_dominating", "node": e.node, "at": e.to_dict()})
            elif not happened_before(e.sent_clock, e.clock):
                anomalies.append({"type": "causality_violation", "node": e.node, "at": e.to_dict()})
        return anomalies

    def check_fifo(self, events: List[TraceEvent]) -> List[dict]:
        sent: Dict[Tuple[int, int], List[str]] = {}
        dropped = set()
        received: Dict[Tuple[int, int], List[str]] = {}
        for e in events:
            if e.kind == "send":
                sent.setdefault((e.node, e.peer), []).append(e.payload)
            elif e.kind == "drop" and e.peer is not None:
                dropped.add((e.node, e.peer, e.payload))
            elif e.kind == "recv":
                received.setdefault((e.peer, e.node), []).append(e.payload)

        anomalies = []
        for edge in sorted(set(sent) | set(received)):
            delivered = [p for p in sent.get(edge, []) if (edge[0], edge[1], p) not in dropped]
            got = received.get(edge, [])
            if got == delivered:
                continue
            if sorted(got) == sorted(delivered):
                anomalies.append({"type": "fifo_violation", "src": edge[0], "dst": edge[1], "sent": delivered, "received": got})
            else:
                missing = [p for p in delivered if p not in got]
                anomalies.append({"type": "undelivered", "src": edge[0], "dst": edge[1], "missing": missing, "received": got})
        return anomalies

    def _record(self, anomaly):
        if self.log_path is None:
            return
        with open(self.log_path, "a") as f:
            f.write(json.dumps(anomaly) + "\n")

    @staticmethod
    def summarize(events: Iterable[TraceEvent]) -> Dict[int, Dict[str, int]]:
        summary: Dict[int, Dict[str, int]] = {}
        for e in events:
            counts = summary.setdefault(e.node, {})
            counts[e.kind] = counts.get(e.kind, 0) + 1
        return summary
