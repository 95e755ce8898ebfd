"""
Workload and timing analytics, recomputed from work order history on demand.

Nothing here is stored: the order rows are the source of truth. An order missing
a timestamp (or with a non-positive duration) is left out of the mean rather
than counted as zero.
"""
from __future__ import annotations

from datetime import datetime, timezone
from statistics import fmean
from typing import Iterable, Protocol

from sqlalchemy.orm import Session

from orderdesk.models.work_order import WorkOrder, WorkOrderStatus
from orderdesk.schemas.stats import AdminWorkload, GlobalTimeStats, QueueCounts


class OrderTimes(Protocol):
    status: str
    assignee_id: str | None
    created_at: datetime
    claimed_at: datetime | None
    completed_at: datetime | None


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _duration(start: datetime | None, end: datetime | None) -> float | None:
    start, end = _as_utc(start), _as_utc(end)
    if start is None or end is None:
        return None
    seconds = (end - start).total_seconds()
    return seconds if seconds > 0 else None


def _mean(values: list[float]) -> float | None:
    return fmean(values) if values else None


def admin_workload(orders: Iterable[OrderTimes], now: datetime | None = None) -> dict[str, AdminWorkload]:
    """Per-operator counts and mean durations (seconds), sorted by completions today."""
    now = _as_utc(now) or datetime.now(timezone.utc)
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    completed_today: dict[str, int] = {}
    waits: dict[str, list[float]] = {}
    completions: dict[str, list[float]] = {}
    for order in orders:
        admin_id = order.assignee_id
        if not admin_id:
            continue
        completed_today.setdefault(admin_id, 0)
        waits.setdefault(admin_id, [])
        completions.setdefault(admin_id, [])

        completed_at = _as_utc(order.completed_at)
        if order.status == WorkOrderStatus.COMPLETED and completed_at is not None and completed_at >= day_start:
            completed_today[admin_id] += 1

        wait = _duration(order.created_at, order.claimed_at)
        if wait is not None:
            waits[admin_id].append(wait)
        if order.status == WorkOrderStatus.COMPLETED:
            completion = _duration(order.claimed_at, order.completed_at)
            if completion is not None:
                completions[admin_id].append(completion)

    result = {
        admin_id: AdminWorkload(
            admin_id=admin_id,
            completed_today=completed_today[admin_id],
            avg_wait_time=_mean(waits[admin_id]),
            avg_completion_time=_mean(completions[admin_id]),
        )
        for admin_id in completed_today
    }
    return dict(sorted(result.items(), key=lambda kv: kv[1].completed_today, reverse=True))


def global_time_stats(orders: Iterable[OrderTimes]) -> GlobalTimeStats:
    """Mean wait, completion and total time over completed orders."""
    waits: list[float] = []
    completions: list[float] = []
    totals: list[float] = []
    for order in orders:
        if order.status != WorkOrderStatus.COMPLETED:
            continue
        for bucket, value in (
            (waits, _duration(order.created_at, order.claimed_at)),
            (completions, _duration(order.claimed_at, order.completed_at)),
            (totals, _duration(order.created_at, order.completed_at)),
        ):
            if value is not None:
                bucket.append(value)
    return GlobalTimeStats(
        avg_wait_time=_mean(waits),
        avg_completion_time=_mean(completions),
        avg_total_time=_mean(totals),
    )


def queue_counts(orders: Iterable[OrderTimes]) -> QueueCounts:
    counts = {status: 0 for status in WorkOrderStatus.ALL}
    for order in orders:
        if order.status in counts:
            counts[order.status] += 1
    return QueueCounts(**counts)


class StatsAggregator:
    """Loads the order history window and feeds it to the pure functions above."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _orders(self, team_id: str | None = None, since: datetime | None = None) -> list[WorkOrder]:
        q = self.db.query(WorkOrder)
        if team_id:
            q = q.filter(WorkOrder.team_id == team_id)
        if since is not None:
            q = q.filter(WorkOrder.created_at >= since)
        return q.all()

    def admin_workload(self, team_id: str | None = None, since: datetime | None = None) -> dict[str, AdminWorkload]:
        return admin_workload(self._orders(team_id, since))

    def global_time_stats(self, team_id: str | None = None, since: datetime | None = None) -> GlobalTimeStats:
        return global_time_stats(self._orders(team_id, since))

    def queue_counts(self, team_id: str | None = None) -> QueueCounts:
        return queue_counts(self._orders(team_id))
