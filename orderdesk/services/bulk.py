"""
Bulk runner: an explicit task list executed with bounded concurrency.

Each item gets its own session and transaction, so one item's failure never
blocks or rolls back another. Outcomes are returned in input order.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Generic, TypeVar

from sqlalchemy.orm import Session

from orderdesk.core.config import settings
from orderdesk.schemas.bulk import BulkFailure, BulkResult
from orderdesk.services.errors import OrderDeskError, ValidationError
from orderdesk.utils.metrics import bulk_items_total

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = Callable[[], Session]


class BulkOutcome(Generic[T]):
    def __init__(self, item_id: str, value: T | None = None, error: OrderDeskError | None = None) -> None:
        self.item_id = item_id
        self.value = value
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None


def unique_ids(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(i for i in ids if i))


def run_bulk(
    op: str,
    ids: list[str],
    task: Callable[[Session, str], T],
    session_factory: SessionFactory,
    max_workers: int | None = None,
) -> list[BulkOutcome[T]]:
    ids = unique_ids(ids)
    if len(ids) > settings.bulk_max_items:
        raise ValidationError(f"at most {settings.bulk_max_items} items per bulk operation")
    if not ids:
        return []

    def _run_one(item_id: str) -> BulkOutcome[T]:
        db = session_factory()
        try:
            value = task(db, item_id)
            bulk_items_total.labels(op=op, outcome="ok").inc()
            return BulkOutcome(item_id, value=value)
        except OrderDeskError as e:
            db.rollback()
            bulk_items_total.labels(op=op, outcome=e.code).inc()
            return BulkOutcome(item_id, error=e)
        except Exception as e:
            db.rollback()
            bulk_items_total.labels(op=op, outcome="internal_error").inc()
            logger.exception("bulk_item_failed", extra={"op": op, "error": str(e)})
            err = OrderDeskError(str(e) or type(e).__name__)
            err.code = "internal_error"
            return BulkOutcome(item_id, error=err)
        finally:
            db.close()

    workers = max(1, min(max_workers or settings.bulk_max_workers, len(ids)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"bulk-{op}") as pool:
        outcomes = list(pool.map(_run_one, ids))

    logger.info(
        "bulk_completed",
        extra={
            "op": op,
            "succeeded": sum(1 for o in outcomes if o.ok),
            "failed": sum(1 for o in outcomes if not o.ok),
        },
    )
    return outcomes


def summarize(outcomes: list[BulkOutcome]) -> BulkResult:
    result = BulkResult()
    for o in outcomes:
        if o.ok:
            result.succeeded.append(o.item_id)
        else:
            result.failed.append(BulkFailure(id=o.item_id, error=o.error.code, detail=o.error.message))
    return result
