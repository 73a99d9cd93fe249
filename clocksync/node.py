# clocksync/node.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .channel import ChannelClosed, Receiver, Sender
from .clock import Clock, ClockValue
from .decision import Action, Decider, PeerChooser, random_decider, random_peer_chooser
from .trace import EventTrace

logger = logging.getLogger("clocksync.node")


@dataclass(frozen=True)
class Message:
    origin: int
    timestamp: ClockValue
    payload: str


class Node:
    """One simulated participant.

    Runs a listener that merges incoming timestamps and an event loop that
    draws local events, sends and idles. Both share ``self.clock`` through
    ``self.lock``, which is only held for a single clock operation.
    """

    def __init__(
        self,
        node_id: int,
        clock: Clock,
        inbox: Receiver,
        peers: Dict[int, Sender],
        trace: Optional[EventTrace] = None,
        decide: Optional[Decider] = None,
        choose_peer: Optional[PeerChooser] = None,
        iterations: int = 10,
        event_delay: float = 1.0,
    ):
        if node_id in peers:
            raise ValueError(f"Node {node_id} cannot be its own peer")
        self.node_id = node_id
        self.clock = clock
        self.inbox = inbox
        self.peers = peers
        self.trace = trace if trace is not None else EventTrace()
        self.decide = decide or random_decider()
        self.choose_peer = choose_peer or random_peer_chooser()
        self.iterations = iterations
        self.event_delay = event_delay
        self.lock = asyncio.Lock()
        self.received = 0
        self.sent = 0
        self.delivery_failures = 0

    async def read_clock(self) -> ClockValue:
        async with self.lock:
            return self.clock.read()

    async def _advance(self) -> ClockValue:
        async with self.lock:
            return self.clock.advance()

    async def listen(self):
        try:
            async for message in self.inbox:
                async with self.lock:
                    merged = self.clock.merge(message.timestamp)
                self.received += 1
                self.trace.record(
                    self.node_id,
                    "recv",
                    merged,
                    peer=message.origin,
                    payload=message.payload,
                    sent_clock=message.timestamp,
                )
        finally:
            # senders blocked on a full inbox must fail instead of waiting forever
            await self.inbox.close()

    async def generate_events(self):
        try:
            for i in range(self.iterations):
                action = Action(self.decide(self.node_id, i))
                if action is Action.LOCAL:
                    t = await self._advance()
                    self.trace.record(self.node_id, "local", t, iteration=i)
                elif action is Action.SEND:
                    await self._send(i)
                else:
                    t = await self.read_clock()
                    self.trace.record(self.node_id, "idle", t, iteration=i)

                if self.event_delay:
                    await asyncio.sleep(self.event_delay)
        finally:
            await self.close_peers()

    async def _send(self, iteration: int):
        t = await self._advance()
        payload = str(iteration)
        if not self.peers:
            self.delivery_failures += 1
            logger.warning("Node %s: no peers, message %s dropped", self.node_id, payload)
            self.trace.record(self.node_id, "drop", t, iteration=iteration, payload=payload)
            return
        peer = self.choose_peer(self.node_id, sorted(self.peers))
        message = Message(origin=self.node_id, timestamp=t, payload=payload)
        # recorded before the send can suspend so the trace keeps this node's clock order
        self.trace.record(self.node_id, "send", t, iteration=iteration, peer=peer, payload=payload)
        try:
            await self.peers[peer].send(message)
        except ChannelClosed as e:
            self.delivery_failures += 1
            logger.warning("Node %s: message %s to node %s lost: %s", self.node_id, payload, peer, e)
            self.trace.record(self.node_id, "drop", t, iteration=iteration, peer=peer, payload=payload)
            return
        self.sent += 1

    async def close_peers(self):
        for sender in self.peers.values():
            await sender.close()

    async def run(self):
        """Run listener and event loop together; the first error is re-raised after both end."""
        results = await asyncio.gather(self.listen(), self.generate_events(), return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        for extra in errors[1:]:
            logger.error("Node %s: second activity also failed: %r", self.node_id, extra)
        if errors:
            raise errors[0]
