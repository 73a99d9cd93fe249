# clocksync/decision.py
import math
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence


class Action(str, Enum):
    LOCAL = "local"
    SEND = "send"
    IDLE = "idle"


Decider = Callable[[int, int], Action]
PeerChooser = Callable[[int, Sequence[int]], int]


@dataclass(frozen=True)
class ActionWeights:
    local: float = 1
    send: float = 1
    idle: float = 2

    def __post_init__(self):
        weights = (self.local, self.send, self.idle)
        if not all(math.isfinite(w) and w >= 0 for w in weights):
            raise ValueError(f"action weights must be finite and non-negative: {weights}")
        if sum(weights) <= 0:
            raise ValueError("at least one action weight must be positive")

    def as_list(self) -> List[float]:
        return [self.local, self.send, self.idle]


def random_decider(weights: ActionWeights = ActionWeights(), rng: Optional[random.Random] = None) -> Decider:
    rng = rng or random.Random()
    actions = [Action.LOCAL, Action.SEND, Action.IDLE]

    def decide(node_id: int, iteration: int) -> Action:
        return rng.choices(actions, weights=weights.as_list())[0]

    return decide


def random_peer_chooser(rng: Optional[random.Random] = None) -> PeerChooser:
    rng = rng or random.Random()

    def choose(node_id: int, peer_ids: Sequence[int]) -> int:
        return rng.choice(list(peer_ids))

    return choose


def scripted_decider(script: Dict[int, Sequence[Action]]) -> Decider:
    """Replay a fixed action list per node; past the end every node idles."""
    def decide(node_id: int, iteration: int) -> Action:
        actions = script.get(node_id, ())
        if iteration < len(actions):
            return Action(actions[iteration])
        return Action.IDLE

    return decide


def scripted_peers(script: Dict[int, Sequence[int]]) -> PeerChooser:
    """Pick peers in the order listed per node, then fall back to the lowest peer id."""
    cursors: Dict[int, int] = {}

    def choose(node_id: int, peer_ids: Sequence[int]) -> int:
        targets = script.get(node_id, ())
        pos = cursors.get(node_id, 0)
        cursors[node_id] = pos + 1
        if pos < len(targets):
            if targets[pos] not in peer_ids:
                raise ValueError(f"node {node_id} has no peer {targets[pos]}")
            return targets[pos]
        return min(peer_ids)

    return choose
