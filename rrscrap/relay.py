"""Bounded broadcast channel between the chapter walker and the archive writer.

Every receiver sees every item sent after it subscribed. What happens when a
receiver falls ``capacity`` items behind depends on the policy:

* ``DROP_OLDEST``: the sender never waits. The oldest unread items are evicted
  for the slow receiver, whose next ``recv()`` raises ``RelayLagged`` and then
  resumes at the oldest item still held.
* ``BLOCK``: ``send()`` waits until the slowest receiver has room again.

Once every sender handle is closed and a receiver has read everything, its
``recv()`` raises ``RelayClosed``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from enum import Enum
from typing import Any, Deque, Set, Tuple

from .errors import RelayHandoffError

DEFAULT_CAPACITY = 10_000


class BackpressurePolicy(str, Enum):
    DROP_OLDEST = "drop-oldest"
    BLOCK = "block"


class RelayLagged(Exception):
    """Raised by ``Receiver.recv`` when unread items were evicted."""

    def __init__(self, skipped: int):
        super().__init__(f"receiver lagged by {skipped} items")
        self.skipped = skipped


class RelayClosed(Exception):
    """Raised by ``Receiver.recv`` once all senders are gone and nothing is left."""


# --------- Handles ---------
class Sender:
    def __init__(self, relay: "Relay"):
        self._relay = relay
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def clone(self) -> "Sender":
        if self._closed:
            raise RelayHandoffError("cannot clone a closed sender")
        return self._relay.sender()

    async def send(self, item: Any) -> int:
        """Publish ``item`` and return how many receivers will see it."""
        if self._closed:
            raise RelayHandoffError("sender is closed")
        return await self._relay._publish(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._relay._release_sender()

    def __enter__(self) -> "Sender":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Receiver:
    def __init__(self, relay: "Relay", position: int):
        self._relay = relay
        self._position = position
        self._ready = asyncio.Event()
        self._closed = False

    @property
    def pending(self) -> int:
        """Items sent but not yet read (evicted ones included)."""
        return self._relay._next_seq - self._position

    async def recv(self) -> Any:
        relay = self._relay
        while True:
            if self._closed:
                raise RelayClosed()
            oldest = relay._oldest_seq
            if self._position < oldest:
                skipped = oldest - self._position
                self._position = oldest
                raise RelayLagged(skipped)
            if self._position < relay._next_seq:
                _, item = relay._buffer[self._position - oldest]
                self._position += 1
                relay._reclaim()
                return item
            if relay.closed:
                raise RelayClosed()
            self._ready.clear()
            await self._ready.wait()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._relay._unsubscribe(self)

    def _wake(self) -> None:
        self._ready.set()


# --------- Channel ---------
class Relay:
    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        policy: BackpressurePolicy = BackpressurePolicy.DROP_OLDEST,
    ):
        if capacity < 1:
            raise ValueError(f"relay capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.policy = BackpressurePolicy(policy)
        self._buffer: Deque[Tuple[int, Any]] = deque()
        self._next_seq = 0
        self._senders = 0
        self._closed = False
        self._receivers: Set[Receiver] = set()
        self._space = asyncio.Event()

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def receiver_count(self) -> int:
        return len(self._receivers)

    @property
    def sender_count(self) -> int:
        return self._senders

    def sender(self) -> Sender:
        if self._closed:
            raise RelayHandoffError("relay is closed")
        self._senders += 1
        return Sender(self)

    def subscribe(self) -> Receiver:
        receiver = Receiver(self, self._next_seq)
        self._receivers.add(receiver)
        return receiver

    @property
    def _oldest_seq(self) -> int:
        return self._buffer[0][0] if self._buffer else self._next_seq

    def _backlog(self) -> int:
        if not self._receivers:
            return 0
        return self._next_seq - min(r._position for r in self._receivers)

    async def _publish(self, item: Any) -> int:
        if not self._receivers:
            raise RelayHandoffError("relay has no active receiver")
        if self.policy is BackpressurePolicy.BLOCK:
            while self._receivers and self._backlog() >= self.capacity:
                self._space.clear()
                await self._space.wait()
            if not self._receivers:
                raise RelayHandoffError("relay has no active receiver")

        self._buffer.append((self._next_seq, item))
        self._next_seq += 1
        if len(self._buffer) > self.capacity:
            self._buffer.popleft()
        for receiver in self._receivers:
            receiver._wake()
        return len(self._receivers)

    def _reclaim(self) -> None:
        # drop items every receiver has already read
        if self._receivers:
            floor = min(r._position for r in self._receivers)
        else:
            floor = self._next_seq
        while self._buffer and self._buffer[0][0] < floor:
            self._buffer.popleft()
        self._space.set()

    def _unsubscribe(self, receiver: Receiver) -> None:
        self._receivers.discard(receiver)
        self._reclaim()

    def _release_sender(self) -> None:
        self._senders -= 1
        if self._senders == 0:
            self._closed = True
            for receiver in self._receivers:
                receiver._wake()
