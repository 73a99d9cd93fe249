# clocksync/pipeline.py
"""Producer/consumer topology: several producers and one consumer share a
single clock and a single channel, instead of one clock per node."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, Tuple

from .channel import ChannelClosed, Receiver, Sender, channel
from .clock import Clock, ClockValue, make_clock
from .node import Message

logger = logging.getLogger("clocksync.pipeline")


class SharedClock:
    def __init__(self, clock: Clock):
        self.clock = clock
        self.lock = asyncio.Lock()

    async def advance(self) -> ClockValue:
        async with self.lock:
            return self.clock.advance()

    async def merge(self, received: ClockValue) -> ClockValue:
        async with self.lock:
            return self.clock.merge(received)

    async def read(self) -> ClockValue:
        async with self.lock:
            return self.clock.read()


def number_source(count: int = 9) -> Iterator[str]:
    return (str(i) for i in range(1, count + 1))


class Producer:
    def __init__(self, producer_id: int, clock: SharedClock, sender: Sender, source: Iterable[str], delay: float = 0.0):
        self.producer_id = producer_id
        self.name = f"producer-{producer_id}"
        self.clock = clock
        self.sender = sender
        self.source = source
        self.delay = delay
        self.sent: List[Message] = []
        self.failures = 0

    async def produce(self):
        try:
            for item in self.source:
                message = Message(origin=self.producer_id, timestamp=await self.clock.advance(), payload=item)
                logger.info("%s sending %s at time %s", self.name, message.payload, message.timestamp)
                try:
                    await self.sender.send(message)
                except ChannelClosed as e:
                    self.failures += 1
                    logger.error("%s error sending message: %s", self.name, e)
                    continue
                self.sent.append(message)
                if self.delay:
                    await asyncio.sleep(self.delay)
        finally:
            await self.sender.close()


class Consumer:
    def __init__(self, clock: SharedClock, receiver: Receiver, name: str = "consumer"):
        self.name = name
        self.clock = clock
        self.receiver = receiver
        self.received: List[Tuple[Message, ClockValue]] = []

    async def consume(self):
        try:
            async for message in self.receiver:
                merged = await self.clock.merge(message.timestamp)
                logger.info("%s received %s at time %s", self.name, message.payload, message.timestamp)
                self.received.append((message, merged))
        finally:
            await self.receiver.close()
        return self.received


@dataclass
class PipelineResult:
    final_clock: ClockValue
    received: List[Tuple[Message, ClockValue]]
    failures: int = 0
    errors: List[BaseException] = field(default_factory=list)


async def _run_pipeline(clock, producers, capacity, delay, source):
    shared = SharedClock(make_clock(clock))
    tx, rx = channel(capacity)
    senders = [tx] + [tx.clone() for _ in range(producers - 1)]
    workers = [Producer(i, shared, s, source(), delay) for i, s in enumerate(senders)]
    consumer = Consumer(shared, rx)
    outcomes = await asyncio.gather(
        consumer.consume(), *(p.produce() for p in workers), return_exceptions=True
    )
    errors = [o for o in outcomes if isinstance(o, BaseException)]
    for e in errors:
        logger.error("pipeline task failed: %r", e)
    return PipelineResult(
        final_clock=await shared.read(),
        received=consumer.received,
        failures=sum(p.failures for p in workers),
        errors=errors,
    )


def run_pipeline(
    clock: str = "lamport",
    producers: int = 3,
    capacity: int = 10,
    delay: float = 0.0,
    source: Callable[[], Iterable[str]] = number_source,
) -> PipelineResult:
    if producers < 1:
        raise ValueError("need at least one producer")
    return asyncio.run(_run_pipeline(clock, producers, capacity, delay, source))
