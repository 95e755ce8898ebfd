"""Tests for WorkOrderQueue: admission, claim races, completion charging, cancellation, bulk."""
from decimal import Decimal
from unittest.mock import patch

import pytest

from conftest import FailingSink
from orderdesk.models.ledger_entry import LedgerEntry
from orderdesk.models.work_order import WorkOrderStatus
from orderdesk.services.errors import (
    ArtifactFormatError,
    ConcurrencyConflict,
    InsufficientCredit,
    InvalidState,
    NotFound,
    StateConflict,
    ValidationError,
)
from orderdesk.services.events import BalanceChanged, OrderClaimed, OrderCompleted
from orderdesk.services.ledger.service import LedgerService
from orderdesk.services.pricing.service import PricingResolver
from orderdesk.services.work_orders.service import WorkOrderQueue, normalize_items

ATTRS = {"prompt": "Landing page for a bakery", "work_type": "html", "ai_tier": "senior"}


@pytest.fixture
def queue(db, storage, sink, bus, session_factory):
    return WorkOrderQueue(db, storage=storage, notifier=sink, events=bus, session_factory=session_factory)


def _entries(db, team_id):
    return db.query(LedgerEntry).filter(LedgerEntry.team_id == team_id).all()


def _claimed(queue, team, names=("site-a",), worker="op-1"):
    orders = queue.submit(team.id, "user-1", list(names), ATTRS)
    return [queue.claim(o.id, worker) for o in orders]


class TestNormalizeItems:
    def test_strips_and_dedupes(self):
        assert normalize_items([" a ", "b", "a", "", "  "]) == ["a", "b"]

    def test_requires_one_name(self):
        with pytest.raises(ValidationError):
            normalize_items(["", " "])


class TestSubmit:
    def test_creates_one_order_per_name_without_charging(self, db, queue, make_team):
        team = make_team(balance="100")
        orders = queue.submit(team.id, "user-1", ["site-a", "site-b", "site-c"], ATTRS)

        assert [o.site_name for o in orders] == ["site-a", "site-b", "site-c"]
        assert all(o.status == WorkOrderStatus.REQUESTED for o in orders)
        assert all(o.price == Decimal("7") for o in orders)
        assert LedgerService(db).get_balance(team.id) == Decimal("100")
        assert len(_entries(db, team.id)) == 1

    def test_admission_counts_credit_limit(self, db, queue, make_team):
        team = make_team(balance="5", credit_limit="10")
        assert len(queue.submit(team.id, "user-1", ["a", "b"], ATTRS)) == 2

    def test_insufficient_credit_creates_nothing(self, db, queue, make_team):
        team = make_team(balance="10", credit_limit="0")
        with pytest.raises(InsufficientCredit) as exc:
            queue.submit(team.id, "user-1", ["a", "b"], ATTRS)
        assert exc.value.required == Decimal("14")
        assert exc.value.available == Decimal("10")
        assert queue.list_orders(team_id=team.id) == []

    def test_vip_surcharge_and_react_price(self, db, queue, make_team):
        team = make_team(balance="100")
        attrs = dict(ATTRS, work_type="react", vip_prompt="Extra polish on hero section")
        [order] = queue.submit(team.id, "user-1", ["vip-site"], attrs)
        assert order.price == Decimal("11")

    def test_manual_price_override(self, db, queue, make_team):
        team = make_team(balance="100")
        PricingResolver(db).set_tariff(team.id, manual_price="4")
        [order] = queue.submit(team.id, "user-1", ["cheap"], dict(ATTRS, work_type="react"))
        assert order.price == Decimal("4")

    def test_invalid_attributes(self, queue, make_team):
        team = make_team()
        with pytest.raises(ValidationError):
            queue.submit(team.id, "user-1", ["a"], {"prompt": "   "})
        with pytest.raises(ValidationError):
            queue.submit(team.id, "user-1", ["a"], dict(ATTRS, work_type="wordpress"))

    def test_unknown_team(self, queue):
        with pytest.raises(NotFound):
            queue.submit("missing", "user-1", ["a"], ATTRS)


class TestClaim:
    def test_claim_sets_assignee_and_notifies(self, queue, make_team, sink, bus):
        team = make_team()
        [order] = queue.submit(team.id, "user-1", ["site-a"], ATTRS)
        claimed = queue.claim(order.id, "op-1")

        assert claimed.status == WorkOrderStatus.CLAIMED
        assert claimed.assignee_id == "op-1"
        assert claimed.claimed_at is not None
        assert [n.type for n in sink.notifications] == ["work_order_claimed"]
        assert sink.notifications[0].user_id == "user-1"
        assert bus.of_type(OrderClaimed)[0].assignee_id == "op-1"

    def test_second_claim_loses(self, session_factory, storage, make_team, queue):
        team = make_team()
        [order] = queue.submit(team.id, "user-1", ["site-a"], ATTRS)
        s1, s2 = session_factory(), session_factory()
        try:
            WorkOrderQueue(s1, storage=storage).claim(order.id, "op-1")
            with pytest.raises(StateConflict):
                WorkOrderQueue(s2, storage=storage).claim(order.id, "op-2")
        finally:
            s1.close()
            s2.close()
        assert queue.get(order.id).assignee_id == "op-1"

    def test_claim_non_requested(self, queue, make_team):
        team = make_team()
        [order] = queue.submit(team.id, "user-1", ["site-a"], ATTRS)
        queue.cancel(order.id)
        with pytest.raises(StateConflict):
            queue.claim(order.id, "op-1")

    def test_claim_missing(self, queue):
        with pytest.raises(NotFound):
            queue.claim("missing", "op-1")

    def test_notification_failure_does_not_undo_claim(self, db, storage, bus, make_team):
        team = make_team()
        failing = FailingSink()
        q = WorkOrderQueue(db, storage=storage, notifier=failing, events=bus)
        [order] = q.submit(team.id, "user-1", ["site-a"], ATTRS)
        claimed = q.claim(order.id, "op-1")
        assert claimed.status == WorkOrderStatus.CLAIMED
        assert failing.calls == 1


class TestComplete:
    def test_complete_charges_team_once(self, db, queue, storage, make_team, site_zip, bus, sink):
        team = make_team(balance="100")
        [order] = _claimed(queue, team)
        storage.put("a.zip", site_zip)

        done = queue.complete(order.id, "a.zip", note="Delivered", actor_id="op-1")

        assert done.status == WorkOrderStatus.COMPLETED
        assert done.final_price == Decimal("7")
        assert done.artifact_ref == "a.zip"
        assert {f["path"] for f in done.files_data} == {"index.html", "css/style.css"}
        ledger = LedgerService(db)
        assert ledger.get_balance(team.id) == Decimal("93")
        assert ledger.recompute_balance(team.id) == Decimal("93")
        debits = [e for e in _entries(db, team.id) if e.reference_type == "work_order"]
        assert len(debits) == 1 and debits[0].reference_id == order.id
        assert bus.of_type(OrderCompleted)[0].final_price == Decimal("7")
        assert bus.of_type(BalanceChanged)[-1].balance_after == Decimal("93")
        assert sink.notifications[-1].type == "work_order_completed"

    def test_final_price_overrides_quote(self, db, queue, storage, make_team, site_zip):
        team = make_team(balance="100")
        [order] = _claimed(queue, team)
        storage.put("a.zip", site_zip)
        done = queue.complete(order.id, "a.zip", final_price="5.50")
        assert done.final_price == Decimal("5.50")
        assert LedgerService(db).get_balance(team.id) == Decimal("94.50")

    def test_final_price_rounded_to_cents(self, db, queue, storage, make_team, site_zip):
        team = make_team(balance="100")
        [order] = _claimed(queue, team)
        storage.put("a.zip", site_zip)
        done = queue.complete(order.id, "a.zip", final_price="5.555")
        assert done.final_price == Decimal("5.56")
        ledger = LedgerService(db)
        assert ledger.get_balance(team.id) == ledger.recompute_balance(team.id) == Decimal("94.44")

    def test_zero_final_price_still_records_entry(self, db, queue, storage, make_team, site_zip):
        team = make_team(balance="100")
        [order] = _claimed(queue, team)
        storage.put("a.zip", site_zip)
        queue.complete(order.id, "a.zip", final_price="0")
        debits = [e for e in _entries(db, team.id) if e.reference_type == "work_order"]
        assert len(debits) == 1 and debits[0].amount == Decimal("0")
        assert LedgerService(db).get_balance(team.id) == Decimal("100")

    def test_completion_can_push_balance_into_credit(self, db, queue, storage, make_team, site_zip):
        team = make_team(balance="5", credit_limit="10")
        [order] = _claimed(queue, team)
        storage.put("a.zip", site_zip)
        queue.complete(order.id, "a.zip")
        assert LedgerService(db).get_balance(team.id) == Decimal("-2")

    def test_bad_archive_leaves_order_claimed(self, db, queue, storage, make_team, sink):
        team = make_team(balance="100")
        [order] = _claimed(queue, team)
        storage.put("bad.zip", b"not a zip")
        sent = len(sink.notifications)

        with pytest.raises(ArtifactFormatError):
            queue.complete(order.id, "bad.zip")
        with pytest.raises(ArtifactFormatError):
            queue.complete(order.id, "never-uploaded.zip")

        assert queue.get(order.id).status == WorkOrderStatus.CLAIMED
        assert LedgerService(db).get_balance(team.id) == Decimal("100")
        assert len(sink.notifications) == sent

    def test_ledger_failure_rolls_back_completion(self, db, queue, storage, make_team, site_zip):
        team = make_team(balance="100")
        [order] = _claimed(queue, team)
        storage.put("a.zip", site_zip)
        with patch.object(LedgerService, "apply_entry", side_effect=ConcurrencyConflict("busy")):
            with pytest.raises(ConcurrencyConflict):
                queue.complete(order.id, "a.zip")
        order = queue.get(order.id)
        assert order.status == WorkOrderStatus.CLAIMED
        assert order.final_price is None
        assert LedgerService(db).get_balance(team.id) == Decimal("100")

    def test_complete_twice_rejected(self, db, queue, storage, make_team, site_zip):
        team = make_team(balance="100")
        [order] = _claimed(queue, team)
        storage.put("a.zip", site_zip)
        queue.complete(order.id, "a.zip")
        with pytest.raises(InvalidState):
            queue.complete(order.id, "a.zip")
        assert LedgerService(db).get_balance(team.id) == Decimal("93")

    def test_complete_requires_claim(self, queue, storage, make_team, site_zip):
        team = make_team()
        [order] = queue.submit(team.id, "user-1", ["a"], ATTRS)
        storage.put("a.zip", site_zip)
        with pytest.raises(InvalidState):
            queue.complete(order.id, "a.zip")

    def test_download_artifact(self, queue, storage, make_team, site_zip):
        team = make_team()
        [order] = _claimed(queue, team)
        with pytest.raises(InvalidState):
            queue.download_artifact(order.id)
        storage.put("a.zip", site_zip)
        queue.complete(order.id, "a.zip")
        assert queue.download_artifact(order.id) == site_zip


class TestCancel:
    def test_cancel_requested(self, queue, make_team, sink):
        team = make_team()
        [order] = queue.submit(team.id, "user-1", ["a"], ATTRS)
        cancelled = queue.cancel(order.id, "Duplicate request")
        assert cancelled.status == WorkOrderStatus.CANCELLED
        assert cancelled.cancel_reason == "Duplicate request"
        assert sink.notifications[-1].type == "work_order_cancelled"

    def test_claimed_order_cannot_be_cancelled(self, queue, make_team):
        team = make_team()
        [order] = _claimed(queue, team)
        with pytest.raises(InvalidState):
            queue.cancel(order.id)
        assert queue.get(order.id).status == WorkOrderStatus.CLAIMED

    def test_terminal_states_do_not_regress(self, queue, storage, make_team, site_zip):
        team = make_team()
        [order] = _claimed(queue, team)
        storage.put("a.zip", site_zip)
        queue.complete(order.id, "a.zip")
        with pytest.raises(InvalidState):
            queue.cancel(order.id)
        with pytest.raises(StateConflict):
            queue.claim(order.id, "op-2")
        assert queue.get(order.id).status == WorkOrderStatus.COMPLETED


class TestBulk:
    def test_bulk_claim_partial_success_single_dispatch(self, queue, make_team, sink):
        team = make_team(balance="100")
        orders = queue.submit(team.id, "user-1", ["a", "b", "c"], ATTRS)
        queue.cancel(orders[1].id)
        sink.batches.clear()

        result = queue.bulk_transition(
            [orders[0].id, orders[1].id, orders[2].id, "missing"], "claim", actor_id="op-1", max_workers=1
        )

        assert result.succeeded == [orders[0].id, orders[2].id]
        assert {f.id: f.error for f in result.failed} == {orders[1].id: "state_conflict", "missing": "not_found"}
        assert len(sink.batches) == 1
        [summary] = sink.batches[0]
        assert summary.user_id == "user-1"
        assert summary.data["work_order_ids"] == [orders[0].id, orders[2].id]

    def test_bulk_complete_uses_per_order_artifacts(self, db, queue, storage, make_team, site_zip, sink):
        team = make_team(balance="100")
        orders = _claimed(queue, team, names=("a", "b"))
        storage.put("a.zip", site_zip)
        sink.batches.clear()

        result = queue.bulk_transition(
            [o.id for o in orders],
            "complete",
            actor_id="op-1",
            artifact_refs={orders[0].id: "a.zip"},
            max_workers=1,
        )

        assert result.succeeded == [orders[0].id]
        assert result.failed[0].id == orders[1].id
        assert result.failed[0].error == "validation_error"
        db.expire_all()
        assert LedgerService(db).get_balance(team.id) == Decimal("93")
        assert len(sink.batches) == 1

    def test_bulk_groups_notifications_per_requester(self, queue, make_team, sink):
        team = make_team(balance="100")
        a = queue.submit(team.id, "user-1", ["a"], ATTRS)
        b = queue.submit(team.id, "user-2", ["b", "c"], ATTRS)
        sink.batches.clear()

        queue.bulk_transition([o.id for o in a + b], "cancel", reason="Client paused", max_workers=1)

        [batch] = sink.batches
        by_user = {n.user_id: n.data["work_order_ids"] for n in batch}
        assert by_user == {"user-1": [a[0].id], "user-2": [b[0].id, b[1].id]}

    def test_bulk_nothing_succeeded_sends_nothing(self, queue, sink):
        result = queue.bulk_transition(["missing"], "cancel", max_workers=1)
        assert result.succeeded == []
        assert sink.batches == []

    def test_bulk_validation(self, queue):
        with pytest.raises(ValidationError):
            queue.bulk_transition(["x"], "archive")
        with pytest.raises(ValidationError):
            queue.bulk_transition(["x"], "claim")
