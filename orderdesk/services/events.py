"""
Domain events emitted after a transition is committed.

Subscribers (live UI relays, stats refreshers) register on an EventBus; the core
never depends on how they transport the event.
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DomainEvent(BaseModel):
    occurred_at: datetime = Field(default_factory=_now)

    model_config = {"frozen": True}


class OrderClaimed(DomainEvent):
    work_order_id: str
    team_id: str
    assignee_id: str


class OrderCompleted(DomainEvent):
    work_order_id: str
    team_id: str
    assignee_id: str | None
    final_price: Decimal


class BalanceChanged(DomainEvent):
    team_id: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    entry_id: str


class AppealResolved(DomainEvent):
    appeal_id: str
    work_order_id: str
    team_id: str
    status: str
    refund_amount: Decimal


Handler = Callable[[DomainEvent], None]


class EventBus:
    """In-process publish/subscribe. Handler errors are logged, never raised."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[DomainEvent], handler: Handler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type[DomainEvent], handler: Handler) -> None:
        with self._lock:
            if handler in self._handlers[event_type]:
                self._handlers[event_type].remove(handler)

    def emit(self, event: DomainEvent) -> None:
        with self._lock:
            handlers = [
                h
                for event_type, hs in self._handlers.items()
                if isinstance(event, event_type)
                for h in hs
            ]
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "event_handler_failed",
                    extra={"event": type(event).__name__, "error": str(e)},
                )

    def emit_all(self, events: list[DomainEvent]) -> None:
        for event in events:
            self.emit(event)


event_bus = EventBus()
