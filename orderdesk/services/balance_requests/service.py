"""
Balance top-up requests.

A team member asks for credit (usually after paying an invoice); an administrator
approves or rejects it. Approval credits the ledger in the same transaction as the
status change, referenced by the request id so a request is paid at most once.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from orderdesk.models.balance_request import BalanceRequest, BalanceRequestStatus
from orderdesk.services.errors import AlreadyResolved, NotFound, ValidationError
from orderdesk.services.events import EventBus, event_bus
from orderdesk.services.ledger.service import CENTS, LedgerService, balance_changed
from orderdesk.services.notifications.service import (
    NotificationDispatcher,
    NotificationMessage,
    NotificationSink,
)
from orderdesk.utils.metrics import balance_requests_resolved_total

logger = logging.getLogger(__name__)


class BalanceRequestService:
    def __init__(
        self,
        db: Session,
        notifier: NotificationSink | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.db = db
        self.dispatcher = NotificationDispatcher(notifier)
        self.events = events or event_bus
        self.ledger = LedgerService(db, self.events)

    def get(self, request_id: str) -> BalanceRequest:
        request = (
            self.db.query(BalanceRequest)
            .filter(BalanceRequest.id == request_id)
            .populate_existing()
            .one_or_none()
        )
        if request is None:
            raise NotFound(f"balance request {request_id} not found")
        return request

    def list_requests(
        self,
        status: str | None = None,
        team_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[BalanceRequest]:
        q = self.db.query(BalanceRequest)
        if status:
            q = q.filter(BalanceRequest.status == status)
        if team_id:
            q = q.filter(BalanceRequest.team_id == team_id)
        return q.order_by(BalanceRequest.created_at.desc()).offset(offset).limit(limit).all()

    def pending_count(self) -> int:
        return self.db.query(BalanceRequest).filter(BalanceRequest.status == BalanceRequestStatus.PENDING).count()

    def file(self, team_id: str, requester_id: str, amount: Decimal | int | str, note: str) -> BalanceRequest:
        if not requester_id:
            raise ValidationError("requester_id is required")
        amount = Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)
        if amount <= 0:
            raise ValidationError("amount must be > 0")
        note = (note or "").strip()
        if not note:
            raise ValidationError("note is required")
        self.ledger.get_team(team_id)

        request = BalanceRequest(
            team_id=team_id,
            requester_id=requester_id,
            amount=amount,
            note=note,
            status=BalanceRequestStatus.PENDING,
        )
        self.db.add(request)
        self.db.commit()
        self.db.refresh(request)
        logger.info(
            "balance_request_filed",
            extra={"request_id": request.id, "team_id": team_id, "actor_id": requester_id, "amount": str(amount)},
        )
        return request

    def approve(self, request_id: str, comment: str | None, resolver_id: str | None) -> BalanceRequest:
        """Credit the requested amount and mark the request approved, atomically."""
        request = self._pending(request_id)
        amount = Decimal(request.amount)
        try:
            self._transition(request_id, BalanceRequestStatus.APPROVED, comment, resolver_id)
            _, entry = self.ledger.apply_entry_with_retry(
                request.team_id,
                amount,
                f"Request #{request_id[:8]}: {request.note}",
                resolver_id,
                reference=("balance_request", request_id),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        request = self.get(request_id)
        balance_requests_resolved_total.labels(decision=BalanceRequestStatus.APPROVED).inc()
        logger.info(
            "balance_request_approved",
            extra={"request_id": request_id, "team_id": request.team_id, "amount": str(amount), "actor_id": resolver_id},
        )
        self.events.emit(balance_changed(entry))
        self.dispatcher.dispatch(
            [
                NotificationMessage(
                    user_id=request.requester_id,
                    type="balance_approved",
                    title="Top-up request approved",
                    message=f"Your top-up request for ${amount:.2f} was approved and credited to the team balance.",
                    data={"request_id": request_id, "amount": str(amount)},
                )
            ]
        )
        return request

    def reject(self, request_id: str, comment: str | None, resolver_id: str | None) -> BalanceRequest:
        comment = (comment or "").strip()
        if not comment:
            raise ValidationError("a comment is required to reject a balance request")
        request = self._pending(request_id)
        try:
            self._transition(request_id, BalanceRequestStatus.REJECTED, comment, resolver_id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        request = self.get(request_id)
        amount = Decimal(request.amount)
        balance_requests_resolved_total.labels(decision=BalanceRequestStatus.REJECTED).inc()
        logger.info(
            "balance_request_rejected",
            extra={"request_id": request_id, "team_id": request.team_id, "actor_id": resolver_id},
        )
        self.dispatcher.dispatch(
            [
                NotificationMessage(
                    user_id=request.requester_id,
                    type="balance_rejected",
                    title="Top-up request rejected",
                    message=f"Your top-up request for ${amount:.2f} was rejected. Reason: {comment}",
                    data={"request_id": request_id, "amount": str(amount), "reason": comment},
                )
            ]
        )
        return request

    def _pending(self, request_id: str) -> BalanceRequest:
        request = self.get(request_id)
        if request.status != BalanceRequestStatus.PENDING:
            raise AlreadyResolved(f"balance request {request_id} is already {request.status}")
        return request

    def _transition(self, request_id: str, status: str, comment: str | None, resolver_id: str | None) -> None:
        result = self.db.execute(
            update(BalanceRequest)
            .where(BalanceRequest.id == request_id, BalanceRequest.status == BalanceRequestStatus.PENDING)
            .values(
                status=status,
                admin_comment=(comment or "").strip() or None,
                resolved_by=resolver_id,
                resolved_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyResolved(f"balance request {request_id} was resolved concurrently")
