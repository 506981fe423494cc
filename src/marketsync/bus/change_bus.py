"""In-process publish/subscribe of table change notifications."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Callable

import structlog

from marketsync.errors import ValidationError
from marketsync.models import ChangeNotification

log = structlog.get_logger(__name__)

EVENT_FILTERS = ("INSERT", "UPDATE", "DELETE", "*")

Handler = Callable[[ChangeNotification], None]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by ChangeBus.subscribe; pass it back to unsubscribe."""

    sub_id: int
    table: str
    event_filter: str


class ChangeBus:
    """Delivers notifications tagged by table and event type.

    Delivery is at-least-once with no ordering guarantee across tables. When an
    event loop is running, handlers are scheduled with call_soon instead of
    being invoked inside publish().
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._handlers: dict[Subscription, Handler] = {}

    def subscribe(self, table: str, event_filter: str, handler: Handler) -> Subscription:
        if event_filter not in EVENT_FILTERS:
            raise ValidationError(f"Unknown event filter: {event_filter!r}")
        sub = Subscription(next(self._ids), table, event_filter)
        self._handlers[sub] = handler
        log.debug("bus_subscribed", table=table, event_type=event_filter, sub_id=sub.sub_id)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        if self._handlers.pop(subscription, None) is not None:
            log.debug("bus_unsubscribed", table=subscription.table, sub_id=subscription.sub_id)

    @property
    def subscription_count(self) -> int:
        return len(self._handlers)

    def publish(self, notification: ChangeNotification) -> int:
        """Deliver notification to matching subscribers. Returns number of deliveries."""
        targets = [
            (sub, handler)
            for sub, handler in self._handlers.items()
            if sub.table == notification.table
            and (notification.event == "*" or sub.event_filter in ("*", notification.event))
        ]
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        for sub, handler in targets:
            if loop is not None:
                loop.call_soon(self._deliver, sub, handler, notification)
            else:
                self._deliver(sub, handler, notification)
        return len(targets)

    def _deliver(self, sub: Subscription, handler: Handler, notification: ChangeNotification) -> None:
        # Released between publish and delivery
        if sub not in self._handlers:
            return
        try:
            handler(notification)
        except Exception as e:
            log.warning(
                "bus_handler_failed",
                table=notification.table,
                event_type=notification.event,
                sub_id=sub.sub_id,
                error=str(e),
            )
