"""Multicast change feed.

Every observer owns a bounded buffer. ``emit`` never suspends: it appends to
each buffer and wakes the reader. When a buffer is full the oldest event is
dropped, so a stalled observer can fall behind but never blocks the writer or
other observers.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from vaultwatch.core.models import ChangeEvent, TokenMetadata
from vaultwatch.core.store import RegistryStore

LOGGER = logging.getLogger(__name__)


class FeedSubscription:
    """One observer's view of the feed, consumed with ``async for``."""

    def __init__(self, feed: "ChangeFeed", max_pending: int) -> None:
        self._feed = feed
        self._buffer: Deque[ChangeEvent] = deque()
        self._max_pending = max_pending
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    @property
    def pending(self) -> int:
        return len(self._buffer)

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        if len(self._buffer) >= self._max_pending:
            self._buffer.popleft()
            self.dropped += 1
            LOGGER.warning("Feed observer is lagging; dropped %s event(s) so far", self.dropped)
        self._buffer.append(event)
        self._ready.set()

    def get_nowait(self) -> Optional[ChangeEvent]:
        """Return the next buffered event, or None if nothing is waiting."""

        if not self._buffer:
            return None
        return self._buffer.popleft()

    async def get(self) -> ChangeEvent:
        """Wait for the next event; raises StopAsyncIteration once closed and drained."""

        while not self._buffer:
            if self._closed:
                raise StopAsyncIteration
            self._ready.clear()
            await self._ready.wait()
        return self._buffer.popleft()

    def close(self) -> None:
        """Detach from the feed; already-buffered events stay readable."""

        if self._closed:
            return
        self._closed = True
        self._feed._detach(self)
        self._ready.set()

    def __aiter__(self) -> "FeedSubscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self.get()


class ChangeFeed:
    """Fan-out of ChangeEvents to any number of observers."""

    def __init__(self, store: RegistryStore, buffer_size: int = 256) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self._store = store
        self._buffer_size = buffer_size
        self._subscribers: List[FeedSubscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe_all(self) -> Tuple[Dict[str, TokenMetadata], FeedSubscription]:
        """Capture the current snapshot and attach a new observer.

        Both steps run without a suspension point in between, so an event is
        either reflected in the snapshot or delivered on the stream, never
        both and never neither.
        """

        snapshot = self._store.all()
        subscription = FeedSubscription(self, self._buffer_size)
        self._subscribers.append(subscription)
        return snapshot, subscription

    def emit(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscribers):
            subscription._push(event)

    def close(self) -> None:
        for subscription in list(self._subscribers):
            subscription.close()

    def _detach(self, subscription: FeedSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
