"""Live feeds of collection snapshots.

A principal holds at most one subscription per feed; opening a second one
closes the first.  Publishers hand over raw snapshots and every
subscription re-runs the read decision against its principal before
delivering, so streamed data obeys the same visibility as list queries.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence

from clubhouse.access_control import readable_resources
from clubhouse.identity import Session, session_events
from clubhouse.principal import Principal
from clubhouse.store import Record

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    def __init__(self, principal: Principal, feed: str) -> None:
        self.principal = principal
        self.feed = feed
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def deliver(self, records: Sequence[Record]) -> None:
        if self.closed:
            return
        self._queue.put_nowait(readable_resources(self.principal, records))

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    async def snapshots(self) -> AsyncIterator[list[Record]]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class FeedHub:
    def __init__(self) -> None:
        self._subscriptions: dict[tuple[str, str], Subscription] = {}

    def open(self, principal: Principal, feed: str) -> Subscription:
        key = (principal.id, feed)
        previous = self._subscriptions.pop(key, None)
        if previous is not None:
            previous.close()
            logger.debug("Replaced %s subscription for %s", feed, principal.id)
        subscription = Subscription(principal, feed)
        self._subscriptions[key] = subscription
        return subscription

    def release(self, subscription: Subscription) -> None:
        """Close ``subscription`` and forget it if it is still the current one."""
        key = (subscription.principal.id, subscription.feed)
        if self._subscriptions.get(key) is subscription:
            del self._subscriptions[key]
        subscription.close()

    def close_all(self, principal_id: str) -> int:
        keys = [k for k in self._subscriptions if k[0] == principal_id]
        for key in keys:
            self._subscriptions.pop(key).close()
        return len(keys)

    def update_principal(self, principal: Principal) -> None:
        for (principal_id, _), subscription in self._subscriptions.items():
            if principal_id == principal.id:
                subscription.principal = principal

    def has_subscribers(self, feed: str) -> bool:
        return any(f == feed for _, f in self._subscriptions)

    def subscribers(self, feed: str) -> list[Subscription]:
        return [s for (_, f), s in self._subscriptions.items() if f == feed]

    def publish(self, feed: str, records: Sequence[Record]) -> None:
        for subscription in self.subscribers(feed):
            subscription.deliver(records)

    def handle_session_change(self, subject_id: str, session: Session | None) -> None:
        if session is None:
            closed = self.close_all(subject_id)
            if closed:
                logger.info("Closed %d feed(s) for signed-out %s", closed, subject_id)


feed_hub = FeedHub()
session_events.subscribe(feed_hub.handle_session_change)
