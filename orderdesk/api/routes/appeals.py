"""
Appeals over completed work orders.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderdesk.api.deps import get_current_actor, get_notifier, get_session_factory
from orderdesk.db.session import get_db
from orderdesk.schemas.appeals import AppealOut, BulkResolveRequest, FileAppealRequest, ResolveAppealRequest
from orderdesk.schemas.bulk import BulkResult
from orderdesk.schemas.stats import PendingCount
from orderdesk.services.appeals.service import AppealService
from orderdesk.services.bulk import SessionFactory
from orderdesk.services.notifications.service import NotificationSink

router = APIRouter(prefix="/appeals", tags=["appeals"])


def get_appeals(
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> AppealService:
    return AppealService(db, notifier=notifier, session_factory=session_factory)


@router.post("", response_model=AppealOut, status_code=201)
def file_appeal(
    payload: FileAppealRequest,
    svc: AppealService = Depends(get_appeals),
    actor_id: str = Depends(get_current_actor),
):
    return svc.file(payload.work_order_id, actor_id, payload.reason, payload.refund_amount, payload.evidence_refs)


@router.get("", response_model=list[AppealOut])
def list_appeals(
    svc: AppealService = Depends(get_appeals),
    actor_id: str = Depends(get_current_actor),
    status: str | None = None,
    team_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return svc.list_appeals(status=status, team_id=team_id, limit=limit, offset=offset)


@router.post("/bulk-resolve", response_model=BulkResult)
def bulk_resolve(
    payload: BulkResolveRequest,
    svc: AppealService = Depends(get_appeals),
    actor_id: str = Depends(get_current_actor),
):
    return svc.bulk_resolve(payload.appeal_ids, payload.decision, payload.comment, actor_id)


@router.get("/pending-count", response_model=PendingCount)
def pending_appeals(svc: AppealService = Depends(get_appeals), actor_id: str = Depends(get_current_actor)):
    return PendingCount(pending=svc.pending_count())


@router.get("/{appeal_id}", response_model=AppealOut)
def get_appeal(appeal_id: str, svc: AppealService = Depends(get_appeals), actor_id: str = Depends(get_current_actor)):
    return svc.get(appeal_id)


@router.post("/{appeal_id}/resolve", response_model=AppealOut)
def resolve_appeal(
    appeal_id: str,
    payload: ResolveAppealRequest,
    svc: AppealService = Depends(get_appeals),
    actor_id: str = Depends(get_current_actor),
):
    return svc.resolve(appeal_id, payload.decision, payload.comment, actor_id)
