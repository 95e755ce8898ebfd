"""
Manual work order queue: requested -> claimed -> completed | cancelled.

Every transition is a single conditional UPDATE on the expected current status,
so two operators racing on one order cannot both win. The team is charged at
completion, in the same transaction as the status change.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from orderdesk.models.work_order import WorkOrder, WorkOrderStatus
from orderdesk.schemas.bulk import BulkResult
from orderdesk.schemas.work_orders import OrderAttributes
from orderdesk.services.bulk import SessionFactory, run_bulk, summarize
from orderdesk.services.errors import (
    ArtifactFormatError,
    InsufficientCredit,
    InvalidState,
    NotFound,
    StateConflict,
    ValidationError,
)
from orderdesk.services.events import DomainEvent, EventBus, OrderClaimed, OrderCompleted, event_bus
from orderdesk.services.ledger.service import CENTS, LedgerService, balance_changed
from orderdesk.services.notifications.service import (
    NotificationDispatcher,
    NotificationMessage,
    NotificationSink,
    group_by_recipient,
)
from orderdesk.services.pricing.service import PricingResolver
from orderdesk.services.work_orders.artifact import parse_artifact
from orderdesk.storage.base import Storage
from orderdesk.utils.metrics import claim_wait_seconds, insufficient_credit_total, work_orders_total

logger = logging.getLogger(__name__)

BULK_OPS = ("claim", "complete", "cancel")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_items(items: list[str]) -> list[str]:
    names: list[str] = []
    for item in items:
        name = (item or "").strip()
        if name and name not in names:
            names.append(name)
    if not names:
        raise ValidationError("at least one site name is required")
    return names


class WorkOrderQueue:
    def __init__(
        self,
        db: Session,
        storage: Storage | None = None,
        notifier: NotificationSink | None = None,
        events: EventBus | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.db = db
        self.storage = storage
        self.notifier = notifier
        self.dispatcher = NotificationDispatcher(notifier)
        self.events = events or event_bus
        self.session_factory = session_factory
        self.ledger = LedgerService(db, self.events)
        self.pricing = PricingResolver(db)

    # ---------- reads ----------

    def get(self, order_id: str) -> WorkOrder:
        order = (
            self.db.query(WorkOrder)
            .filter(WorkOrder.id == order_id)
            .populate_existing()
            .one_or_none()
        )
        if order is None:
            raise NotFound(f"work order {order_id} not found")
        return order

    def list_orders(
        self,
        team_id: str | None = None,
        status: str | None = None,
        assignee_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[WorkOrder]:
        q = self.db.query(WorkOrder)
        if team_id:
            q = q.filter(WorkOrder.team_id == team_id)
        if status:
            if status not in WorkOrderStatus.ALL:
                raise ValidationError(f"unknown status: {status}")
            q = q.filter(WorkOrder.status == status)
        if assignee_id:
            q = q.filter(WorkOrder.assignee_id == assignee_id)
        return q.order_by(WorkOrder.created_at.desc()).offset(offset).limit(limit).all()

    def download_artifact(self, order_id: str) -> bytes:
        order = self.get(order_id)
        if order.status != WorkOrderStatus.COMPLETED or not order.artifact_ref:
            raise InvalidState(f"work order {order_id} has no artifact")
        try:
            return self._storage().get(order.artifact_ref)
        except KeyError as e:
            raise NotFound(f"artifact {order.artifact_ref} not found") from e

    # ---------- transitions ----------

    def quote(self, team_id: str, attributes: OrderAttributes) -> Decimal:
        price = self.pricing.resolve(team_id, attributes.work_type, attributes.ai_tier)
        if attributes.vip_prompt:
            price += self.pricing.vip_extra(team_id)
        return price

    def submit(
        self,
        team_id: str,
        requester_id: str,
        items: list[str],
        attributes: OrderAttributes | dict[str, Any],
    ) -> list[WorkOrder]:
        """Create one Requested order per item if the team can cover all of them.

        No money moves here; the team is charged when an order completes.
        """
        if not requester_id:
            raise ValidationError("requester_id is required")
        if not isinstance(attributes, OrderAttributes):
            try:
                attributes = OrderAttributes.model_validate(attributes)
            except PydanticValidationError as e:
                raise ValidationError(str(e)) from e
        names = normalize_items(items)

        team = self.ledger.get_team(team_id)
        unit_price = self.quote(team_id, attributes)
        total = unit_price * len(names)
        available = self.ledger.available_credit(team)
        if available < total:
            insufficient_credit_total.inc()
            logger.info(
                "work_order_rejected_insufficient_credit",
                extra={"team_id": team_id, "amount": str(total), "balance_after": str(available)},
            )
            raise InsufficientCredit(required=total, available=available)

        attachments = [a.model_dump(mode="json") for a in attributes.attachments]
        orders = [
            WorkOrder(
                team_id=team_id,
                requester_id=requester_id,
                status=WorkOrderStatus.REQUESTED,
                price=unit_price,
                site_name=name,
                prompt=attributes.prompt,
                language=attributes.language,
                work_type=attributes.work_type,
                ai_tier=attributes.ai_tier,
                geo=attributes.geo,
                note=attributes.note,
                vip_prompt=attributes.vip_prompt,
                attachments=attachments,
            )
            for name in names
        ]
        self.db.add_all(orders)
        self.db.commit()
        for order in orders:
            self.db.refresh(order)
        work_orders_total.labels(event="submitted").inc(len(orders))
        logger.info(
            "work_orders_submitted",
            extra={"team_id": team_id, "actor_id": requester_id, "count": len(orders), "amount": str(total)},
        )
        return orders

    def claim(self, order_id: str, worker_id: str, notify: bool = True) -> WorkOrder:
        """Atomically take a Requested order; exactly one of racing workers wins."""
        if not worker_id:
            raise ValidationError("worker_id is required")
        now = _utcnow()
        result = self.db.execute(
            update(WorkOrder)
            .where(
                WorkOrder.id == order_id,
                WorkOrder.status == WorkOrderStatus.REQUESTED,
                WorkOrder.assignee_id.is_(None),
            )
            .values(status=WorkOrderStatus.CLAIMED, assignee_id=worker_id, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            current = self.get(order_id)
            raise StateConflict(f"work order {order_id} is {current.status}, not requested")
        self.db.commit()

        order = self.get(order_id)
        work_orders_total.labels(event="claimed").inc()
        wait = _elapsed_seconds(order.created_at, order.claimed_at)
        if wait is not None:
            claim_wait_seconds.observe(wait)
        logger.info("work_order_claimed", extra={"work_order_id": order_id, "actor_id": worker_id})

        self._publish([OrderClaimed(work_order_id=order.id, team_id=order.team_id, assignee_id=worker_id)])
        if notify:
            self.dispatcher.dispatch([_order_notification(order, "claimed")])
        return order

    def complete(
        self,
        order_id: str,
        artifact_ref: str,
        final_price: Decimal | int | str | None = None,
        note: str | None = None,
        actor_id: str | None = None,
        notify: bool = True,
    ) -> WorkOrder:
        """Accept the site archive, mark Completed and debit the team, all or nothing."""
        order = self.get(order_id)
        if order.status != WorkOrderStatus.CLAIMED:
            raise InvalidState(f"work order {order_id} is {order.status}, not claimed")
        if not artifact_ref:
            raise ValidationError("artifact_ref is required")

        charge = Decimal(order.price) if final_price is None else Decimal(final_price)
        charge = charge.quantize(CENTS, rounding=ROUND_HALF_UP)
        if charge < 0:
            raise ValidationError("final_price must be >= 0")

        try:
            content = self._storage().get(artifact_ref)
        except KeyError as e:
            raise ArtifactFormatError(f"artifact {artifact_ref} not found") from e
        files = parse_artifact(content)

        team_id = order.team_id
        site_name = order.site_name
        try:
            result = self.db.execute(
                update(WorkOrder)
                .where(WorkOrder.id == order_id, WorkOrder.status == WorkOrderStatus.CLAIMED)
                .values(
                    status=WorkOrderStatus.COMPLETED,
                    completed_at=_utcnow(),
                    final_price=charge,
                    artifact_ref=artifact_ref,
                    files_data=[f.model_dump() for f in files] or None,
                    admin_note=note,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidState(f"work order {order_id} is no longer claimed")
            _, entry = self.ledger.apply_entry_with_retry(
                team_id,
                Decimal("0") - charge,
                f"Manual order: {site_name}",
                actor_id or order.assignee_id,
                reference=("work_order", order_id),
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        order = self.get(order_id)
        work_orders_total.labels(event="completed").inc()
        logger.info(
            "work_order_completed",
            extra={"work_order_id": order_id, "team_id": team_id, "amount": str(charge), "actor_id": actor_id},
        )
        self._publish(
            [
                OrderCompleted(
                    work_order_id=order.id,
                    team_id=team_id,
                    assignee_id=order.assignee_id,
                    final_price=charge,
                ),
                balance_changed(entry),
            ]
        )
        if notify:
            self.dispatcher.dispatch([_order_notification(order, "completed")])
        return order

    def cancel(self, order_id: str, reason: str | None = None, notify: bool = True) -> WorkOrder:
        """Cancel a Requested order. Claimed orders have no cancellation path."""
        result = self.db.execute(
            update(WorkOrder)
            .where(WorkOrder.id == order_id, WorkOrder.status == WorkOrderStatus.REQUESTED)
            .values(
                status=WorkOrderStatus.CANCELLED,
                completed_at=_utcnow(),
                cancel_reason=(reason or "").strip() or None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            current = self.get(order_id)
            raise InvalidState(f"work order {order_id} is {current.status}, not requested")
        self.db.commit()

        order = self.get(order_id)
        work_orders_total.labels(event="cancelled").inc()
        logger.info("work_order_cancelled", extra={"work_order_id": order_id})
        if notify:
            self.dispatcher.dispatch([_order_notification(order, "cancelled")])
        return order

    def bulk_transition(
        self,
        order_ids: list[str],
        op: str,
        actor_id: str | None = None,
        reason: str | None = None,
        artifact_refs: dict[str, str] | None = None,
        max_workers: int | None = None,
    ) -> BulkResult:
        """Apply claim/complete/cancel to each id independently.

        One aggregated notification batch is dispatched at the end for the
        successful items.
        """
        if op not in BULK_OPS:
            raise ValidationError(f"unknown bulk op: {op}")
        if op == "claim" and not actor_id:
            raise ValidationError("actor_id is required to claim")
        artifact_refs = artifact_refs or {}

        def task(db: Session, order_id: str) -> WorkOrder:
            queue = WorkOrderQueue(db, storage=self.storage, events=self.events)
            if op == "claim":
                return queue.claim(order_id, actor_id, notify=False)
            if op == "cancel":
                return queue.cancel(order_id, reason, notify=False)
            ref = artifact_refs.get(order_id)
            if not ref:
                raise ValidationError(f"no artifact_ref for work order {order_id}")
            return queue.complete(order_id, ref, actor_id=actor_id, notify=False)

        outcomes = run_bulk(f"work_order_{op}", order_ids, task, self._session_factory(), max_workers)
        done = [o.value for o in outcomes if o.ok]
        self.dispatcher.dispatch(_aggregate_order_notifications(done, op))
        return summarize(outcomes)

    # ---------- helpers ----------

    def _storage(self) -> Storage:
        if self.storage is None:
            from orderdesk.storage.local import LocalStorage

            self.storage = LocalStorage()
        return self.storage

    def _session_factory(self) -> SessionFactory:
        if self.session_factory is None:
            from orderdesk.db.session import SessionLocal

            self.session_factory = SessionLocal
        return self.session_factory

    def _publish(self, events: list[DomainEvent]) -> None:
        self.events.emit_all(events)


def _elapsed_seconds(start: datetime | None, end: datetime | None) -> float | None:
    if start is None or end is None:
        return None
    if (start.tzinfo is None) != (end.tzinfo is None):
        start = start.replace(tzinfo=None)
        end = end.replace(tzinfo=None)
    return (end - start).total_seconds()


_ORDER_TITLES = {
    "claimed": "Order taken in work",
    "completed": "Order completed",
    "cancelled": "Order cancelled",
}


def _order_notification(order: WorkOrder, event: str) -> NotificationMessage:
    message = f"{order.site_name}: {_ORDER_TITLES[event].lower()}"
    if event == "cancelled" and order.cancel_reason:
        message += f" ({order.cancel_reason})"
    return NotificationMessage(
        user_id=order.requester_id,
        type=f"work_order_{event}",
        title=_ORDER_TITLES[event],
        message=message,
        data={"work_order_id": order.id, "team_id": order.team_id},
    )


def _aggregate_order_notifications(orders: list[WorkOrder], op: str) -> list[NotificationMessage]:
    event = {"claim": "claimed", "complete": "completed", "cancel": "cancelled"}[op]
    names = {o.id: o.site_name for o in orders}
    grouped = group_by_recipient((o.requester_id, o.id) for o in orders)
    return [
        NotificationMessage(
            user_id=user_id,
            type=f"work_orders_{event}",
            title=f"{len(ids)} orders {event}",
            message=", ".join(names[i] for i in ids),
            data={"work_order_ids": ids},
        )
        for user_id, ids in grouped.items()
    ]
