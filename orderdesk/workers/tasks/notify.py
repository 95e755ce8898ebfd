"""
Notification delivery worker: persists in-app notifications and relays the
batch to the optional webhook.
"""
import logging

from pydantic import ValidationError

from orderdesk.core.celery_app import celery_app
from orderdesk.core.config import settings
from orderdesk.db.session import SessionLocal
from orderdesk.services.errors import DownstreamError
from orderdesk.services.notifications.service import DatabaseSink, NotificationMessage, WebhookRelay

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="orderdesk.workers.tasks.notify.deliver_notifications",
    max_retries=3,
    default_retry_delay=10,
)
def deliver_notifications(self, payload: list[dict]) -> dict:
    try:
        notifications = [NotificationMessage.model_validate(item) for item in payload]
    except ValidationError as e:
        logger.warning("notification_payload_invalid", extra={"error": str(e)})
        return {"stored": 0, "relayed": False, "error": "invalid_payload"}

    db = SessionLocal()
    try:
        DatabaseSink(db).send(notifications)
    except Exception as e:
        db.rollback()
        logger.exception("notification_store_failed", extra={"count": len(notifications)})
        raise self.retry(exc=e)
    finally:
        db.close()

    relayed = False
    if settings.notification_webhook_url:
        relay = WebhookRelay()
        try:
            relay.send(notifications)
            relayed = True
        except DownstreamError as e:
            logger.warning("notification_relay_failed", extra={"count": len(notifications), "error": str(e)})
        finally:
            relay.close()

    logger.info("notifications_delivered", extra={"count": len(notifications)})
    return {"stored": len(notifications), "relayed": relayed}
