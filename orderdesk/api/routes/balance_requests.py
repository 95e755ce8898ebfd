"""
Balance top-up requests: filed by team members, decided by administrators.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderdesk.api.deps import get_current_actor, get_notifier
from orderdesk.db.session import get_db
from orderdesk.schemas.balance_requests import (
    BalanceRequestCreate,
    BalanceRequestDecision,
    BalanceRequestOut,
)
from orderdesk.schemas.stats import PendingCount
from orderdesk.services.balance_requests.service import BalanceRequestService
from orderdesk.services.notifications.service import NotificationSink

router = APIRouter(prefix="/balance-requests", tags=["balance-requests"])


def get_balance_requests(
    db: Session = Depends(get_db),
    notifier: NotificationSink = Depends(get_notifier),
) -> BalanceRequestService:
    return BalanceRequestService(db, notifier=notifier)


@router.post("", response_model=BalanceRequestOut, status_code=201)
def file_balance_request(
    payload: BalanceRequestCreate,
    svc: BalanceRequestService = Depends(get_balance_requests),
    actor_id: str = Depends(get_current_actor),
):
    return svc.file(payload.team_id, actor_id, payload.amount, payload.note)


@router.get("", response_model=list[BalanceRequestOut])
def list_balance_requests(
    svc: BalanceRequestService = Depends(get_balance_requests),
    actor_id: str = Depends(get_current_actor),
    status: str | None = None,
    team_id: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return svc.list_requests(status=status, team_id=team_id, limit=limit, offset=offset)


@router.get("/pending-count", response_model=PendingCount)
def pending_balance_requests(
    svc: BalanceRequestService = Depends(get_balance_requests),
    actor_id: str = Depends(get_current_actor),
):
    return PendingCount(pending=svc.pending_count())


@router.get("/{request_id}", response_model=BalanceRequestOut)
def get_balance_request(
    request_id: str,
    svc: BalanceRequestService = Depends(get_balance_requests),
    actor_id: str = Depends(get_current_actor),
):
    return svc.get(request_id)


@router.post("/{request_id}/approve", response_model=BalanceRequestOut)
def approve_balance_request(
    request_id: str,
    payload: BalanceRequestDecision,
    svc: BalanceRequestService = Depends(get_balance_requests),
    actor_id: str = Depends(get_current_actor),
):
    return svc.approve(request_id, payload.comment, actor_id)


@router.post("/{request_id}/reject", response_model=BalanceRequestOut)
def reject_balance_request(
    request_id: str,
    payload: BalanceRequestDecision,
    svc: BalanceRequestService = Depends(get_balance_requests),
    actor_id: str = Depends(get_current_actor),
):
    return svc.reject(request_id, payload.comment, actor_id)
