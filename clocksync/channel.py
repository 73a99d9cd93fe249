# clocksync/channel.py
"""Bounded multi-producer / single-consumer channel for asyncio tasks.

Stands in for the network between simulated nodes. A full buffer suspends
the sender instead of dropping; the receiver sees ``None`` once every sender
handle has been closed and the buffer is drained.
"""
import asyncio
from collections import deque


class ChannelClosed(Exception):
    """The receiving side of a channel is gone; the item was not delivered."""


class _Channel:
    def __init__(self, capacity: int):
        self.capacity = capacity
        self.items = deque()
        self.senders = 0
        self.receiver_closed = False
        self.cond = asyncio.Condition()

    @property
    def drained(self):
        return self.senders == 0 and not self.items


class Sender:
    def __init__(self, chan: _Channel):
        self._chan = chan
        self._closed = False
        chan.senders += 1

    @property
    def closed(self):
        return self._closed or self._chan.receiver_closed

    def clone(self) -> "Sender":
        if self._closed:
            raise ChannelClosed("cannot clone a closed sender")
        return Sender(self._chan)

    async def send(self, item):
        if self._closed:
            raise ChannelClosed("send on a closed sender")
        chan = self._chan
        async with chan.cond:
            await chan.cond.wait_for(
                lambda: chan.receiver_closed or len(chan.items) < chan.capacity
            )
            if chan.receiver_closed:
                raise ChannelClosed("receiver closed")
            chan.items.append(item)
            chan.cond.notify_all()

    async def close(self):
        if self._closed:
            return
        self._closed = True
        chan = self._chan
        async with chan.cond:
            chan.senders -= 1
            chan.cond.notify_all()


class Receiver:
    def __init__(self, chan: _Channel):
        self._chan = chan

    def __len__(self):
        return len(self._chan.items)

    @property
    def closed(self):
        return self._chan.receiver_closed

    async def recv(self):
        chan = self._chan
        if chan.receiver_closed:
            return None
        async with chan.cond:
            await chan.cond.wait_for(
                lambda: chan.items or chan.senders == 0 or chan.receiver_closed
            )
            if not chan.items or chan.receiver_closed:
                return None
            item = chan.items.popleft()
            chan.cond.notify_all()
            return item

    async def close(self):
        chan = self._chan
        async with chan.cond:
            chan.receiver_closed = True
            chan.items.clear()
            chan.cond.notify_all()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.recv()
        if item is None:
            raise StopAsyncIteration
        return item


def channel(capacity: int = 10):
    """Create a channel and return its first ``(Sender, Receiver)`` pair."""
    if capacity < 1:
        raise ValueError("channel capacity must be at least 1")
    chan = _Channel(capacity)
    return Sender(chan), Receiver(chan)
