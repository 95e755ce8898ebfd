"""
Celery application: broker and result backend from settings.
Notification delivery runs here so a slow sink never holds a request open.
"""
from celery import Celery

from orderdesk.core.config import settings

celery_app = Celery(
    "orderdesk",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "orderdesk.workers.tasks.notify",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=300,
    result_expires=86400,
)

celery_app.conf.task_routes = {
    "orderdesk.workers.tasks.notify.deliver_notifications": {"queue": "notifications"},
}
