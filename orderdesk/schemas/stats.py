from pydantic import BaseModel


class AdminWorkload(BaseModel):
    """Durations in seconds; None when no order has both timestamps."""
    admin_id: str
    completed_today: int = 0
    avg_wait_time: float | None = None
    avg_completion_time: float | None = None


class GlobalTimeStats(BaseModel):
    avg_wait_time: float | None = None
    avg_completion_time: float | None = None
    avg_total_time: float | None = None


class QueueCounts(BaseModel):
    requested: int = 0
    claimed: int = 0
    completed: int = 0
    cancelled: int = 0


class PendingCount(BaseModel):
    """Badge count of items waiting for an administrator."""
    pending: int
