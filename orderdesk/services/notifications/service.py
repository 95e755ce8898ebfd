"""
Notification dispatch.

Delivery is best-effort and decoupled from state transitions: a sink failure is
logged and counted, never raised into claim/complete/resolve.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

import httpx
import pybreaker
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from orderdesk.core.config import settings
from orderdesk.models.notification import Notification
from orderdesk.services.circuit_breaker import get_circuit_breaker
from orderdesk.services.errors import DownstreamError
from orderdesk.utils.metrics import notifications_failed_total

logger = logging.getLogger(__name__)


class NotificationMessage(BaseModel):
    user_id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)


class NotificationSink(Protocol):
    def send(self, notifications: list[NotificationMessage]) -> None: ...


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink | None) -> None:
        self.sink = sink

    def dispatch(self, notifications: Iterable[NotificationMessage]) -> bool:
        batch = list(notifications)
        if not batch or self.sink is None:
            return False
        try:
            self.sink.send(batch)
            return True
        except Exception as e:
            notifications_failed_total.inc()
            logger.warning(
                "notification_dispatch_failed",
                extra={"count": len(batch), "error": str(e)},
            )
            return False


class CelerySink:
    """Hands the batch to the notification worker."""

    def send(self, notifications: list[NotificationMessage]) -> None:
        from orderdesk.workers.tasks.notify import deliver_notifications

        deliver_notifications.delay([n.model_dump(mode="json") for n in notifications])


class DatabaseSink:
    """Writes in-app notification rows. Commits."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def send(self, notifications: list[NotificationMessage]) -> None:
        for n in notifications:
            self.db.add(
                Notification(
                    user_id=n.user_id,
                    type=n.type,
                    title=n.title,
                    message=n.message,
                    data=n.data,
                )
            )
        self.db.commit()


class WebhookRelay:
    """POSTs batches to settings.notification_webhook_url behind a circuit breaker."""

    def __init__(
        self,
        url: str | None = None,
        client: httpx.Client | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self.url = url if url is not None else settings.notification_webhook_url
        self._client = client
        self._breaker = breaker

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=settings.http_client_timeout)
        return self._client

    @property
    def breaker(self) -> pybreaker.CircuitBreaker:
        if self._breaker is None:
            self._breaker = get_circuit_breaker("notification_webhook")
        return self._breaker

    def _post(self, payload: list[dict]) -> None:
        resp = self.client.post(self.url, json={"notifications": payload})
        resp.raise_for_status()

    def send(self, notifications: list[NotificationMessage]) -> None:
        if not self.url:
            return
        payload = [n.model_dump(mode="json") for n in notifications]
        try:
            self.breaker.call(self._post, payload)
        except pybreaker.CircuitBreakerError as e:
            raise DownstreamError("notification relay circuit open") from e
        except httpx.HTTPError as e:
            raise DownstreamError(f"notification relay failed: {e}") from e

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def group_by_recipient(
    items: Iterable[tuple[str, str]],
) -> dict[str, list[str]]:
    """(user_id, entity_id) pairs -> {user_id: [entity_id, ...]} keeping order."""
    grouped: dict[str, list[str]] = {}
    for user_id, entity_id in items:
        grouped.setdefault(user_id, []).append(entity_id)
    return grouped
