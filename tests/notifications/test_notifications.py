"""Tests for notification dispatch, the DB sink, the webhook relay and the delivery task."""
from unittest.mock import MagicMock, patch

import httpx
import pybreaker
import pytest

from conftest import FailingSink, RecordingSink
from orderdesk.models.notification import Notification
from orderdesk.services.errors import DownstreamError
from orderdesk.services.notifications.service import (
    CelerySink,
    DatabaseSink,
    NotificationDispatcher,
    NotificationMessage,
    WebhookRelay,
    group_by_recipient,
)


def _msg(user_id="user-1", **kwargs):
    return NotificationMessage(user_id=user_id, type="work_order_claimed", title="Taken", message="site-a", **kwargs)


class TestDispatcher:
    def test_sends_one_batch(self):
        sink = RecordingSink()
        assert NotificationDispatcher(sink).dispatch([_msg(), _msg("user-2")]) is True
        assert len(sink.batches) == 1
        assert [n.user_id for n in sink.batches[0]] == ["user-1", "user-2"]

    def test_empty_batch_is_not_sent(self):
        sink = RecordingSink()
        assert NotificationDispatcher(sink).dispatch([]) is False
        assert sink.batches == []

    def test_no_sink_configured(self):
        assert NotificationDispatcher(None).dispatch([_msg()]) is False

    def test_sink_failure_is_swallowed(self):
        sink = FailingSink()
        assert NotificationDispatcher(sink).dispatch([_msg()]) is False
        assert sink.calls == 1


class TestGroupByRecipient:
    def test_keeps_order(self):
        grouped = group_by_recipient([("u1", "a"), ("u2", "b"), ("u1", "c")])
        assert grouped == {"u1": ["a", "c"], "u2": ["b"]}


class TestDatabaseSink:
    def test_persists_rows(self, db):
        DatabaseSink(db).send([_msg(data={"work_order_id": "wo-1"}), _msg("user-2")])
        rows = db.query(Notification).order_by(Notification.user_id).all()
        assert [r.user_id for r in rows] == ["user-1", "user-2"]
        assert rows[0].data == {"work_order_id": "wo-1"}
        assert rows[0].read is False


class TestCelerySink:
    def test_enqueues_json_payload(self):
        with patch("orderdesk.workers.tasks.notify.deliver_notifications") as task:
            CelerySink().send([_msg(data={"n": 1})])
        [payload] = task.delay.call_args.args
        assert payload[0]["user_id"] == "user-1"
        assert payload[0]["data"] == {"n": 1}


def _breaker():
    return pybreaker.CircuitBreaker(fail_max=2, reset_timeout=60)


class TestWebhookRelay:
    def test_posts_batch(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        WebhookRelay(url="https://hooks.example/notify", client=client, breaker=_breaker()).send([_msg()])
        assert len(seen) == 1
        assert seen[0].url == "https://hooks.example/notify"

    def test_http_error_becomes_downstream_error(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(502)))
        relay = WebhookRelay(url="https://hooks.example/notify", client=client, breaker=_breaker())
        with pytest.raises(DownstreamError):
            relay.send([_msg()])

    def test_open_circuit_short_circuits(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        relay = WebhookRelay(url="https://hooks.example/notify", client=client, breaker=_breaker())
        for _ in range(3):
            with pytest.raises(DownstreamError):
                relay.send([_msg()])
        assert len(calls) == 2

    def test_no_url_is_noop(self):
        client = MagicMock()
        WebhookRelay(url="", client=client, breaker=_breaker()).send([_msg()])
        client.post.assert_not_called()


class TestDeliverTask:
    def test_stores_and_skips_relay_without_url(self, session_factory, monkeypatch):
        from orderdesk.core.config import settings
        from orderdesk.workers.tasks import notify

        monkeypatch.setattr(notify, "SessionLocal", session_factory)
        monkeypatch.setattr(settings, "notification_webhook_url", "")

        result = notify.deliver_notifications.apply(args=[[_msg().model_dump(mode="json")]]).get()

        assert result == {"stored": 1, "relayed": False}
        db = session_factory()
        try:
            assert db.query(Notification).count() == 1
        finally:
            db.close()

    def test_invalid_payload(self):
        from orderdesk.workers.tasks import notify

        result = notify.deliver_notifications.apply(args=[[{"user_id": "u1"}]]).get()
        assert result["error"] == "invalid_payload"
