"""In-process change notifications for the ``lists`` and ``tubes`` tables."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from .schemas import ChangeEvent

logger = logging.getLogger(__name__)

TABLES = ("lists", "tubes")
ALL_TABLES = "*"

ChangeCallback = Callable[[ChangeEvent], None]


@dataclass(eq=False)
class Subscription:
    """Handle returned by :meth:`ChangeFeed.subscribe`."""

    feed: "ChangeFeed"
    table: str
    callback: ChangeCallback
    active: bool = True

    def unsubscribe(self) -> None:
        if self.active:
            self.feed._remove(self)
            self.active = False


@dataclass(eq=False)
class ChangeFeed:
    """Fan committed row changes out to subscribers.

    Callbacks run synchronously in the publisher's task, in subscription
    order. Events are neither queued nor deduplicated.
    """

    _subscriptions: dict[str, list[Subscription]] = field(default_factory=dict)

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        if table != ALL_TABLES and table not in TABLES:
            raise ValueError(f"Unknown table {table!r}")
        subscription = Subscription(self, table, callback)
        self._subscriptions.setdefault(table, []).append(subscription)
        return subscription

    def publish(self, table: str, event: str, record_id: int) -> ChangeEvent:
        change = ChangeEvent(table=table, event=event, record_id=record_id)
        listeners = [
            *self._subscriptions.get(table, []),
            *self._subscriptions.get(ALL_TABLES, []),
        ]
        logger.debug("Publishing %s on %s #%s to %d listener(s)", event, table, record_id, len(listeners))
        for subscription in listeners:
            try:
                subscription.callback(change)
            except Exception:
                logger.exception("Change listener failed for %s on %s", event, table)
        return change

    def _remove(self, subscription: Subscription) -> None:
        listeners = self._subscriptions.get(subscription.table, [])
        if subscription in listeners:
            listeners.remove(subscription)


__all__ = ["ALL_TABLES", "ChangeCallback", "ChangeFeed", "Subscription", "TABLES"]
