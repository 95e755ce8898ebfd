import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from logging.handlers import RotatingFileHandler

from orderdesk.core.config import settings

# Request lines come from our own middleware; these would duplicate them or flood SQL
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx")


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; money stays exact as a string."""

    # Fields to extract from log record's extra dict
    EXTRA_FIELDS = (
        "team_id", "work_order_id", "appeal_id", "actor_id", "request_id",
        "path", "method", "status_code", "latency_ms", "amount",
        "balance_before", "balance_after", "status", "decision", "op",
        "succeeded", "failed", "attempt", "error", "breaker_name",
        "old_state", "new_state", "count", "event",
    )

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "env": settings.app_env,
        }
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=_jsonable)


def configure_logging(level: str | None = None) -> None:
    formatter = JsonFormatter()
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [handler]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    root.handlers = handlers
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
