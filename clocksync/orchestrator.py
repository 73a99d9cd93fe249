# clocksync/orchestrator.py
import asyncio
import logging
import os
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .channel import Receiver, Sender, channel
from .clock import CLOCK_TYPES, ClockValue, make_clock
from .decision import ActionWeights, Decider, PeerChooser, random_decider, random_peer_chooser
from .node import Node
from .trace import EventTrace, TraceEvent

logger = logging.getLogger("clocksync.orchestrator")

DEFAULT_NUM_NODES = 3
DEFAULT_ITERATIONS = 10
DEFAULT_CAPACITY = 10
DEFAULT_EVENT_DELAY = 1.0


@dataclass
class SimulationConfig:
    num_nodes: int = DEFAULT_NUM_NODES
    iterations: int = DEFAULT_ITERATIONS
    capacity: int = DEFAULT_CAPACITY
    clock: str = "lamport"
    weights: ActionWeights = field(default_factory=ActionWeights)
    event_delay: float = DEFAULT_EVENT_DELAY
    seed: Optional[int] = None
    log_dir: Optional[str] = None

    def __post_init__(self):
        if self.num_nodes < 1:
            raise ValueError("num_nodes must be at least 1")
        if self.iterations < 0:
            raise ValueError("iterations cannot be negative")
        if self.capacity < 1:
            raise ValueError("capacity must be at least 1")
        if self.event_delay < 0:
            raise ValueError("event_delay cannot be negative")
        if self.clock not in CLOCK_TYPES:
            raise ValueError(f"Unknown clock type {self.clock!r}")

    @classmethod
    def from_env(cls, prefix="CLOCKSYNC_", environ=None, **overrides):
        """Build a config from ``CLOCKSYNC_*`` variables; keyword overrides win."""
        env = os.environ if environ is None else environ
        kwargs = {}
        for name, conv in (
            ("num_nodes", int),
            ("iterations", int),
            ("capacity", int),
            ("clock", str),
            ("event_delay", float),
            ("seed", int),
            ("log_dir", str),
        ):
            raw = env.get(prefix + name.upper())
            if raw is not None and raw != "":
                kwargs[name] = conv(raw)
        weights = env.get(prefix + "WEIGHTS")
        if weights:
            local, send, idle = (float(w) for w in weights.split(","))
            kwargs["weights"] = ActionWeights(local, send, idle)
        kwargs.update(overrides)
        return cls(**kwargs)


@dataclass
class SimulationResult:
    config: SimulationConfig
    clocks: Dict[int, ClockValue]
    events: List[TraceEvent]
    errors: List[BaseException]
    delivery_failures: int = 0
    trace_path: Optional[str] = None

    @property
    def ok(self):
        return not self.errors

    def summary(self):
        counts: Dict[str, int] = {}
        for e in self.events:
            counts[e.kind] = counts.get(e.kind, 0) + 1
        return {
            "clock": self.config.clock,
            "nodes": self.config.num_nodes,
            "iterations": self.config.iterations,
            "events": len(self.events),
            "by_kind": counts,
            "delivery_failures": self.delivery_failures,
            "errors": [repr(e) for e in self.errors],
            "ok": self.ok,
        }


def build_mesh(num_nodes: int, capacity: int) -> Tuple[List[Receiver], Dict[int, Dict[int, Sender]]]:
    """All-to-all channel mesh.

    Returns one receiver per node and ``adjacency[i][j]``, node ``i``'s own
    send handle into node ``j``'s inbox, for every ``j != i``. Every handle
    has exactly one owner, so once all owners close their handles each inbox
    reports end of stream.
    """
    receivers: List[Receiver] = []
    adjacency: Dict[int, Dict[int, Sender]] = {x: {} for x in range(num_nodes)}
    for j in range(num_nodes):
        tx, rx = channel(capacity)
        receivers.append(rx)
        senders = [i for i in range(num_nodes) if i != j]
        for n, i in enumerate(senders):
            adjacency[i][j] = tx if n == 0 else tx.clone()
    return receivers, adjacency


class Simulation:
    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        decide: Optional[Decider] = None,
        choose_peer: Optional[PeerChooser] = None,
        trace: Optional[EventTrace] = None,
    ):
        self.config = config or SimulationConfig()
        rng = random.Random(self.config.seed)
        self.decide = decide or random_decider(self.config.weights, rng)
        self.choose_peer = choose_peer or random_peer_chooser(rng)
        self.trace = trace if trace is not None else EventTrace(log_dir=self.config.log_dir)
        self.nodes: Dict[int, Node] = {}

    def register_listener(self, cb):
        self.trace.register_listener(cb)

    def unregister_listener(self, cb):
        self.trace.unregister_listener(cb)

    async def _build(self):
        cfg = self.config
        receivers, adjacency = build_mesh(cfg.num_nodes, cfg.capacity)
        if cfg.num_nodes == 1:
            # a lone node has no one to hear from
            await receivers[0].close()
        self.nodes = {}
        for x in range(cfg.num_nodes):
            self.nodes[x] = Node(
                x,
                make_clock(cfg.clock, x, cfg.num_nodes),
                receivers[x],
                adjacency[x],
                trace=self.trace,
                decide=self.decide,
                choose_peer=self.choose_peer,
                iterations=cfg.iterations,
                event_delay=cfg.event_delay,
            )

    async def run(self) -> SimulationResult:
        await self._build()
        cfg = self.config
        logger.info("Starting %s simulation with %d nodes", cfg.clock, cfg.num_nodes)

        tasks = []
        for node in self.nodes.values():
            tasks.append(asyncio.create_task(node.run(), name=f"node-{node.node_id}"))
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        errors = []
        for task, outcome in zip(tasks, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Task %s failed: %r", task.get_name(), outcome)
                errors.append(outcome)

        result = SimulationResult(
            config=cfg,
            clocks={x: n.clock.read() for x, n in self.nodes.items()},
            events=list(self.trace.events),
            errors=errors,
            delivery_failures=sum(n.delivery_failures for n in self.nodes.values()),
            trace_path=self.trace.log_path,
        )
        logger.info("Simulation finished: %s", result.summary())
        return result


def run_simulation(config: Optional[SimulationConfig] = None, **kwargs) -> SimulationResult:
    return asyncio.run(Simulation(config, **kwargs).run())
