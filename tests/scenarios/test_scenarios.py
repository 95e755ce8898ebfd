"""End-to-end money flows: order charge, appeal refund, admission rejection, bulk refunds."""
from decimal import Decimal

import pytest

from orderdesk.models.appeal import Appeal, AppealStatus
from orderdesk.models.ledger_entry import LedgerEntry
from orderdesk.models.work_order import WorkOrder
from orderdesk.services.appeals.service import AppealService
from orderdesk.services.errors import InsufficientCredit
from orderdesk.services.ledger.service import LedgerService
from orderdesk.services.pricing.service import PricingResolver
from orderdesk.services.work_orders.service import WorkOrderQueue

ATTRS = {"prompt": "Corporate site", "work_type": "html"}


@pytest.fixture
def queue(db, storage, sink, bus, session_factory):
    return WorkOrderQueue(db, storage=storage, notifier=sink, events=bus, session_factory=session_factory)


@pytest.fixture
def appeals(db, sink, bus, session_factory):
    return AppealService(db, notifier=sink, events=bus, session_factory=session_factory)


def _priced_team(db, make_team, balance, price):
    team = make_team(balance=balance, credit_limit="0")
    PricingResolver(db).set_tariff(team.id, html_price=price)
    return team


def _order_entries(db, team_id):
    return (
        db.query(LedgerEntry)
        .filter(LedgerEntry.team_id == team_id, LedgerEntry.reference_type.in_(["work_order", "appeal"]))
        .order_by(LedgerEntry.created_at)
        .all()
    )


def _complete(queue, storage, order_id, site_zip, final_price):
    queue.claim(order_id, "op-1")
    storage.put(f"{order_id}.zip", site_zip)
    return queue.complete(order_id, f"{order_id}.zip", final_price=final_price, actor_id="op-1")


class TestMoneyFlows:
    def test_charge_then_refund(self, db, queue, appeals, storage, make_team, site_zip):
        team = _priced_team(db, make_team, "100", "30")
        ledger = LedgerService(db)

        [order] = queue.submit(team.id, "user-1", ["acme"], ATTRS)
        assert ledger.get_balance(team.id) == Decimal("100")

        _complete(queue, storage, order.id, site_zip, "30")
        assert ledger.get_balance(team.id) == Decimal("70")
        [debit] = _order_entries(db, team.id)
        assert (debit.amount, debit.balance_before, debit.balance_after) == (
            Decimal("-30"),
            Decimal("100"),
            Decimal("70"),
        )

        appeal = appeals.file(order.id, "user-1", "Wrong brand colours", "30")
        resolved = appeals.resolve(appeal.id, AppealStatus.APPROVED, None, "admin-1")
        assert resolved.status == AppealStatus.APPROVED
        assert ledger.get_balance(team.id) == Decimal("100")
        debit, credit = _order_entries(db, team.id)
        assert (credit.amount, credit.balance_before, credit.balance_after) == (
            Decimal("30"),
            Decimal("70"),
            Decimal("100"),
        )
        assert ledger.recompute_balance(team.id) == Decimal("100")

    def test_rejected_admission_creates_nothing(self, db, queue, make_team):
        team = _priced_team(db, make_team, "10", "50")
        with pytest.raises(InsufficientCredit):
            queue.submit(team.id, "user-1", ["too-expensive"], ATTRS)
        assert db.query(WorkOrder).filter(WorkOrder.team_id == team.id).count() == 0

    def test_bulk_refunds_with_one_failure(self, db, queue, appeals, storage, make_team, site_zip, sink):
        team = make_team(balance="100")
        orders = queue.submit(team.id, "user-1", [f"site-{i}" for i in range(5)], ATTRS)
        for order in orders:
            _complete(queue, storage, order.id, site_zip, None)
        appeal_ids = [appeals.file(o.id, "user-1", "Needs fixes", "2").id for o in orders[:4]]

        broken = Appeal(
            work_order_id=orders[4].id,
            team_id="deleted-team",
            requester_id="user-1",
            status=AppealStatus.PENDING,
            refund_amount=Decimal("2"),
            reason="Needs fixes",
            evidence_refs=[],
        )
        db.add(broken)
        db.commit()
        appeal_ids.insert(2, broken.id)
        sink.batches.clear()

        result = appeals.bulk_resolve(appeal_ids, AppealStatus.APPROVED, None, "admin-1", max_workers=1)

        assert len(result.succeeded) == 4
        assert [f.id for f in result.failed] == [broken.id]
        db.expire_all()
        ledger = LedgerService(db)
        assert ledger.get_balance(team.id) == Decimal("100") - 5 * Decimal("7") + 4 * Decimal("2")
        assert ledger.recompute_balance(team.id) == ledger.get_balance(team.id)
        assert appeals.get(broken.id).status == AppealStatus.PENDING
        [batch] = sink.batches
        [summary] = batch
        assert summary.data["appeal_ids"] == result.succeeded
