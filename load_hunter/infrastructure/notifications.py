"""
Change notifications for postings, hunts and matches.

Two sources share one event type (``ChangeEvent``):

- ``EventBus``: in-process fan-out over asyncio queues, published to by the
  memory store;
- ``PgNotificationListener``: PostgreSQL ``LISTEN`` on the channel the
  triggers in `db/init.sql` ``pg_notify`` into.

Delivery is at-least-once on both; consumers must be idempotent.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Optional

from psycopg import AsyncConnection, sql
from pydantic import ValidationError

from load_hunter.config import Settings, get_settings
from load_hunter.domain.models import ChangeEvent
from load_hunter.infrastructure.db_factory import build_dsn
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)


class Subscription:
    """Async iterator over the events published after it was created."""

    def __init__(self, bus: "EventBus") -> None:
        self._bus = bus
        self._queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self._queue.get()

    def put(self, event: ChangeEvent) -> None:
        self._queue.put_nowait(event)

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._bus.unsubscribe(self)


class EventBus:
    """In-process publish/subscribe for change events."""

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            subscription.put(event)


class PgNotificationListener:
    """
    Yield ``ChangeEvent`` objects from PostgreSQL notifications.

    Payloads that do not parse are logged and dropped; the periodic sweep
    covers anything a lost notification would have triggered.
    """

    def __init__(
        self,
        channel: Optional[str] = None,
        dsn: Optional[str] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.channel = channel or settings.notify_channel
        self._dsn = dsn or build_dsn(settings)

    async def listen(self) -> AsyncIterator[ChangeEvent]:
        conn = await AsyncConnection.connect(self._dsn, autocommit=True)
        async with conn:
            await conn.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self.channel)))
            log.info("[LISTEN] subscribed", extra={"channel": self.channel})
            async for notify in conn.notifies():
                try:
                    yield ChangeEvent.model_validate_json(notify.payload)
                except ValidationError as exc:
                    log.warning(
                        "[LISTEN] dropped malformed payload",
                        extra={"channel": self.channel, "error": str(exc)},
                    )


__all__ = ["EventBus", "PgNotificationListener", "Subscription"]
