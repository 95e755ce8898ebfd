from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from orderdesk.api.deps import get_current_actor
from orderdesk.db.session import get_db
from orderdesk.schemas.stats import AdminWorkload, GlobalTimeStats, QueueCounts
from orderdesk.services.stats.service import StatsAggregator

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/workload", response_model=list[AdminWorkload])
def workload(
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
    team_id: str | None = None,
    since: datetime | None = None,
):
    return list(StatsAggregator(db).admin_workload(team_id=team_id, since=since).values())


@router.get("/time", response_model=GlobalTimeStats)
def time_stats(
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
    team_id: str | None = None,
    since: datetime | None = None,
):
    return StatsAggregator(db).global_time_stats(team_id=team_id, since=since)


@router.get("/queue", response_model=QueueCounts)
def queue(db: Session = Depends(get_db), actor_id: str = Depends(get_current_actor), team_id: str | None = None):
    return StatsAggregator(db).queue_counts(team_id=team_id)
