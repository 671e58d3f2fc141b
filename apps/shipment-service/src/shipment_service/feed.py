"""In-process fan-out of committed shipment changes to real-time subscribers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from uuid import uuid4

from shared.events.schema import ChangeEnvelope

logger = logging.getLogger(__name__)

MAX_QUEUED_CHANGES = 500


def matches_status_filter(envelope: ChangeEnvelope, status: str | None) -> bool:
    """True when either side of the change carries ``status``.

    Matching on the old row too lets a subscriber see a row leave its filter.
    """
    if status is None:
        return True
    return any(row is not None and row.get("status") == status for row in (envelope.record, envelope.old_record))


def involves_driver(envelope: ChangeEnvelope, driver_id: str) -> bool:
    return any(row is not None and row.get("driver_id") == driver_id for row in (envelope.record, envelope.old_record))


@dataclass(eq=False)
class ChangeSubscription:
    client_id: str
    status_filter: str | None = None
    driver_id: str | None = None
    queue: asyncio.Queue[ChangeEnvelope | None] = field(
        default_factory=lambda: asyncio.Queue(maxsize=MAX_QUEUED_CHANGES)
    )
    overflowed: bool = False

    def wants(self, envelope: ChangeEnvelope) -> bool:
        if not matches_status_filter(envelope, self.status_filter):
            return False
        return self.driver_id is None or involves_driver(envelope, self.driver_id)

    async def next_change(self) -> ChangeEnvelope | None:
        """Next matching change, or ``None`` once the subscription is closed."""
        return await self.queue.get()


class ShipmentChangeFeed:
    def __init__(self) -> None:
        self._subscriptions: dict[str, ChangeSubscription] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, *, status_filter: str | None = None, driver_id: str | None = None) -> ChangeSubscription:
        subscription = ChangeSubscription(client_id=str(uuid4()), status_filter=status_filter, driver_id=driver_id)
        async with self._lock:
            self._subscriptions[subscription.client_id] = subscription
        logger.info(
            "shipment_feed_subscribed",
            extra={"client_id": subscription.client_id, "status_filter": status_filter},
        )
        return subscription

    async def unsubscribe(self, subscription: ChangeSubscription) -> None:
        async with self._lock:
            self.discard(subscription)

    def discard(self, subscription: ChangeSubscription) -> bool:
        """Drop ``subscription`` without waiting on the lock."""
        removed = self._subscriptions.pop(subscription.client_id, None)
        if removed is None:
            return False
        _close_queue(removed)
        return True

    async def subscriber_count(self) -> int:
        async with self._lock:
            return len(self._subscriptions)

    async def publish(self, envelope: ChangeEnvelope) -> int:
        async with self._lock:
            targets = [item for item in self._subscriptions.values() if item.wants(envelope)]
        delivered = 0
        overflowed: list[ChangeSubscription] = []
        for subscription in targets:
            try:
                subscription.queue.put_nowait(envelope)
                delivered += 1
            except asyncio.QueueFull:
                overflowed.append(subscription)
        for subscription in overflowed:
            logger.warning("shipment_feed_subscriber_overflowed", extra={"client_id": subscription.client_id})
            subscription.overflowed = True
            await self.unsubscribe(subscription)
        return delivered

    async def close(self) -> None:
        async with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            _close_queue(subscription)


def _close_queue(subscription: ChangeSubscription) -> None:
    # a full queue is drained first so the closing sentinel always fits
    while subscription.queue.full():
        subscription.queue.get_nowait()
    subscription.queue.put_nowait(None)
