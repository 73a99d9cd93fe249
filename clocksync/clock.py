# clocksync/clock.py
from abc import ABC, abstractmethod
from typing import Dict, Sequence, Tuple, Type, Union

ClockValue = Union[int, Tuple[int, ...]]


class Clock(ABC):
    """Logical clock owned by exactly one node (or shared by one pipeline).

    Every operation is total: ``advance`` always returns a value strictly
    greater than the one before the call and ``merge`` never lowers any
    tracked counter.
    """

    kind = ""

    @abstractmethod
    def advance(self) -> ClockValue:
        """Record a local event and return the new value."""

    @abstractmethod
    def merge(self, received: ClockValue) -> ClockValue:
        """Fold a received timestamp into the clock, then advance."""

    @abstractmethod
    def read(self) -> ClockValue:
        """Current value, no side effects."""

    def __repr__(self):
        return f"{type(self).__name__}({self.read()!r})"


class LamportClock(Clock):
    kind = "lamport"

    def __init__(self, initial: int = 0):
        if isinstance(initial, bool) or not isinstance(initial, int) or initial < 0:
            raise ValueError(f"initial Lamport time must be a non-negative int, got {initial!r}")
        self.time = initial

    def advance(self) -> int:
        self.time += 1
        return self.time

    def merge(self, received: int) -> int:
        if isinstance(received, bool) or not isinstance(received, int):
            raise ValueError(f"Lamport clock cannot merge {received!r}")
        self.time = max(self.time, received)
        return self.advance()

    def read(self) -> int:
        return self.time


class VectorClock(Clock):
    kind = "vector"

    def __init__(self, node_id: int, num_nodes: int):
        if num_nodes < 1:
            raise ValueError("vector clock needs at least one node")
        if not 0 <= node_id < num_nodes:
            raise ValueError(f"node id {node_id} outside 0..{num_nodes - 1}")
        self.node_id = node_id
        self.vector = [0] * num_nodes

    def advance(self) -> Tuple[int, ...]:
        self.vector[self.node_id] += 1
        return tuple(self.vector)

    def merge(self, received: Sequence[int]) -> Tuple[int, ...]:
        # a short or long vector means the sender tracks a different node set
        if len(received) != len(self.vector):
            raise ValueError(
                f"vector timestamp has {len(received)} entries, expected {len(self.vector)}"
            )
        for entry in received:
            if isinstance(entry, bool) or not isinstance(entry, int) or entry < 0:
                raise ValueError(f"invalid vector entry {entry!r} in {received!r}")
        self.vector = [max(a, b) for a, b in zip(self.vector, received)]
        return self.advance()

    def read(self) -> Tuple[int, ...]:
        return tuple(self.vector)


CLOCK_TYPES: Dict[str, Type[Clock]] = {
    LamportClock.kind: LamportClock,
    VectorClock.kind: VectorClock,
}


def make_clock(kind: str, node_id: int = 0, num_nodes: int = 1) -> Clock:
    if kind not in CLOCK_TYPES:
        raise ValueError(f"Unknown clock type {kind!r}; expected one of {sorted(CLOCK_TYPES)}")
    if kind == VectorClock.kind:
        return VectorClock(node_id, num_nodes)
    return CLOCK_TYPES[kind]()


def _pair(a: ClockValue, b: ClockValue):
    if isinstance(a, int) != isinstance(b, int):
        raise ValueError(f"cannot compare scalar and vector timestamps: {a!r} vs {b!r}")
    if not isinstance(a, int) and len(a) != len(b):
        raise ValueError(f"vector timestamps differ in length: {a!r} vs {b!r}")
    return a, b


def dominates(a: ClockValue, b: ClockValue) -> bool:
    """True when ``a`` is greater than or equal to ``b`` (component-wise for vectors)."""
    a, b = _pair(a, b)
    if isinstance(a, int):
        return a >= b
    return all(x >= y for x, y in zip(a, b))


def happened_before(a: ClockValue, b: ClockValue) -> bool:
    a, b = _pair(a, b)
    if isinstance(a, int):
        return a < b
    return dominates(b, a) and tuple(a) != tuple(b)


def concurrent(a: ClockValue, b: ClockValue) -> bool:
    """Neither timestamp happened before the other.

    Only meaningful for vector timestamps; two distinct Lamport values are
    always ordered.
    """
    return not happened_before(a, b) and not happened_before(b, a) and not _equal(a, b)


def _equal(a: ClockValue, b: ClockValue) -> bool:
    if isinstance(a, int):
        return a == b
    return tuple(a) == tuple(b)
