"""
Appeals: disputes over completed work orders that may refund the team.

Resolution is a conditional update from pending; an approved refund is
credited in the same transaction, so an appeal is never approved-but-unpaid.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderdesk.models.appeal import Appeal, AppealStatus
from orderdesk.models.work_order import WorkOrder, WorkOrderStatus
from orderdesk.schemas.bulk import BulkResult
from orderdesk.services.bulk import SessionFactory, run_bulk, summarize
from orderdesk.services.errors import AlreadyResolved, InvalidState, NotFound, StateConflict, ValidationError
from orderdesk.services.events import AppealResolved, DomainEvent, EventBus, event_bus
from orderdesk.services.ledger.service import CENTS, LedgerService, balance_changed
from orderdesk.services.notifications.service import (
    NotificationDispatcher,
    NotificationMessage,
    NotificationSink,
    group_by_recipient,
)
from orderdesk.utils.metrics import appeals_resolved_total

logger = logging.getLogger(__name__)


class AppealService:
    def __init__(
        self,
        db: Session,
        notifier: NotificationSink | None = None,
        events: EventBus | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.db = db
        self.dispatcher = NotificationDispatcher(notifier)
        self.events = events or event_bus
        self.session_factory = session_factory
        self.ledger = LedgerService(db, self.events)

    def get(self, appeal_id: str) -> Appeal:
        appeal = (
            self.db.query(Appeal)
            .filter(Appeal.id == appeal_id)
            .populate_existing()
            .one_or_none()
        )
        if appeal is None:
            raise NotFound(f"appeal {appeal_id} not found")
        return appeal

    def list_appeals(
        self,
        status: str | None = None,
        team_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Appeal]:
        q = self.db.query(Appeal)
        if status:
            q = q.filter(Appeal.status == status)
        if team_id:
            q = q.filter(Appeal.team_id == team_id)
        return q.order_by(Appeal.created_at.desc()).offset(offset).limit(limit).all()

    def pending_count(self) -> int:
        return self.db.query(Appeal).filter(Appeal.status == AppealStatus.PENDING).count()

    def file(
        self,
        work_order_id: str,
        requester_id: str,
        reason: str,
        requested_refund: Decimal | int | str = 0,
        evidence_refs: list[str] | None = None,
    ) -> Appeal:
        if not requester_id:
            raise ValidationError("requester_id is required")
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("reason is required")
        refund = Decimal(requested_refund).quantize(CENTS, rounding=ROUND_HALF_UP)
        if refund < 0:
            raise ValidationError("refund amount must be >= 0")

        order = self.db.query(WorkOrder).filter(WorkOrder.id == work_order_id).one_or_none()
        if order is None:
            raise NotFound(f"work order {work_order_id} not found")
        if order.status != WorkOrderStatus.COMPLETED:
            raise InvalidState(f"work order {work_order_id} is {order.status}, not completed")
        refundable = self._refundable(order)
        if refund > refundable:
            raise ValidationError(f"refund {refund} exceeds refundable amount {refundable}")

        active = (
            self.db.query(Appeal.id)
            .filter(Appeal.work_order_id == work_order_id, Appeal.status == AppealStatus.PENDING)
            .first()
        )
        if active is not None:
            raise StateConflict(f"work order {work_order_id} already has a pending appeal")

        appeal = Appeal(
            work_order_id=work_order_id,
            team_id=order.team_id,
            requester_id=requester_id,
            status=AppealStatus.PENDING,
            refund_amount=refund,
            reason=reason,
            evidence_refs=[ref for ref in (evidence_refs or []) if ref],
        )
        self.db.add(appeal)
        try:
            self.db.commit()
        except IntegrityError as e:
            # uq_appeals_one_pending_per_order: another filer got in first
            self.db.rollback()
            raise StateConflict(f"work order {work_order_id} already has a pending appeal") from e
        self.db.refresh(appeal)
        logger.info(
            "appeal_filed",
            extra={
                "appeal_id": appeal.id,
                "work_order_id": work_order_id,
                "actor_id": requester_id,
                "amount": str(refund),
            },
        )
        return appeal

    def resolve(
        self,
        appeal_id: str,
        decision: str,
        comment: str | None,
        resolver_id: str | None,
        notify: bool = True,
    ) -> Appeal:
        """Approve or reject a pending appeal. Approval credits the refund first."""
        if decision not in AppealStatus.DECISIONS:
            raise ValidationError(f"unknown decision: {decision}")
        appeal = self.get(appeal_id)
        if appeal.status != AppealStatus.PENDING:
            raise AlreadyResolved(f"appeal {appeal_id} is already {appeal.status}")

        refund = Decimal(appeal.refund_amount)
        team_id = appeal.team_id
        entry = None
        try:
            result = self.db.execute(
                update(Appeal)
                .where(Appeal.id == appeal_id, Appeal.status == AppealStatus.PENDING)
                .values(
                    status=decision,
                    resolution_comment=(comment or "").strip() or None,
                    resolved_by=resolver_id,
                    resolved_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AlreadyResolved(f"appeal {appeal_id} was resolved concurrently")
            if decision == AppealStatus.APPROVED and refund > 0:
                order = self.db.query(WorkOrder).filter(WorkOrder.id == appeal.work_order_id).one_or_none()
                if order is None:
                    raise NotFound(f"work order {appeal.work_order_id} not found")
                refundable = self._refundable(order, exclude_appeal_id=appeal_id)
                if refund > refundable:
                    raise ValidationError(f"refund {refund} exceeds refundable amount {refundable}")
                _, entry = self.ledger.apply_entry_with_retry(
                    team_id,
                    refund,
                    f"Appeal refund: {appeal.work_order_id}",
                    resolver_id,
                    reference=("appeal", appeal_id),
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        appeal = self.get(appeal_id)
        appeals_resolved_total.labels(decision=decision).inc()
        logger.info(
            "appeal_resolved",
            extra={
                "appeal_id": appeal_id,
                "team_id": team_id,
                "decision": decision,
                "amount": str(refund),
                "actor_id": resolver_id,
            },
        )
        events: list[DomainEvent] = [
            AppealResolved(
                appeal_id=appeal.id,
                work_order_id=appeal.work_order_id,
                team_id=team_id,
                status=appeal.status,
                refund_amount=refund,
            )
        ]
        if entry is not None:
            events.append(balance_changed(entry))
        self.events.emit_all(events)
        if notify:
            self.dispatcher.dispatch([_resolution_notification(appeal)])
        return appeal

    def bulk_resolve(
        self,
        appeal_ids: list[str],
        decision: str,
        comment: str | None = None,
        resolver_id: str | None = None,
        max_workers: int | None = None,
    ) -> BulkResult:
        if decision not in AppealStatus.DECISIONS:
            raise ValidationError(f"unknown decision: {decision}")

        def task(db: Session, appeal_id: str) -> Appeal:
            svc = AppealService(db, events=self.events)
            return svc.resolve(appeal_id, decision, comment, resolver_id, notify=False)

        outcomes = run_bulk("appeal_resolve", appeal_ids, task, self._session_factory(), max_workers)
        resolved = [o.value for o in outcomes if o.ok]
        self.dispatcher.dispatch(_aggregate_resolution_notifications(resolved, decision))
        return summarize(outcomes)

    def _refundable(self, order: WorkOrder, exclude_appeal_id: str | None = None) -> Decimal:
        """Charged price of the order less refunds already approved for it."""
        q = self.db.query(func.coalesce(func.sum(Appeal.refund_amount), 0)).filter(
            Appeal.work_order_id == order.id,
            Appeal.status == AppealStatus.APPROVED,
        )
        if exclude_appeal_id is not None:
            q = q.filter(Appeal.id != exclude_appeal_id)
        approved = Decimal(str(q.scalar())).quantize(CENTS)
        charged = Decimal(order.final_price if order.final_price is not None else order.price)
        return charged.quantize(CENTS) - approved

    def _session_factory(self) -> SessionFactory:
        if self.session_factory is None:
            from orderdesk.db.session import SessionLocal

            self.session_factory = SessionLocal
        return self.session_factory


def _resolution_notification(appeal: Appeal) -> NotificationMessage:
    if appeal.status == AppealStatus.APPROVED:
        title = "Appeal approved"
        message = f"Refunded ${Decimal(appeal.refund_amount):.2f}"
    else:
        title = "Appeal rejected"
        message = appeal.resolution_comment or "Your appeal was rejected"
    return NotificationMessage(
        user_id=appeal.requester_id,
        type=f"appeal_{appeal.status}",
        title=title,
        message=message,
        data={"appeal_id": appeal.id, "work_order_id": appeal.work_order_id},
    )


def _aggregate_resolution_notifications(appeals: list[Appeal], decision: str) -> list[NotificationMessage]:
    refunds = {a.id: Decimal(a.refund_amount) for a in appeals}
    grouped = group_by_recipient((a.requester_id, a.id) for a in appeals)
    notifications = []
    for user_id, ids in grouped.items():
        total = sum((refunds[i] for i in ids), Decimal("0"))
        message = f"{len(ids)} appeals {decision}"
        if decision == AppealStatus.APPROVED:
            message += f", refunded ${total:.2f}"
        notifications.append(
            NotificationMessage(
                user_id=user_id,
                type=f"appeals_{decision}",
                title=f"Appeals {decision}",
                message=message,
                data={"appeal_ids": ids},
            )
        )
    return notifications
