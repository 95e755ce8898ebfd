"""Tests for BalanceRequestService: filing, approval credit, rejection, single decision."""
from decimal import Decimal
from unittest.mock import patch

import pytest

from orderdesk.models.balance_request import BalanceRequestStatus
from orderdesk.models.ledger_entry import LedgerEntry
from orderdesk.services.balance_requests.service import BalanceRequestService
from orderdesk.services.errors import AlreadyResolved, ConcurrencyConflict, NotFound, ValidationError
from orderdesk.services.events import BalanceChanged
from orderdesk.services.ledger.service import LedgerService


@pytest.fixture
def requests_svc(db, sink, bus):
    return BalanceRequestService(db, notifier=sink, events=bus)


def _credits(db, team_id):
    return (
        db.query(LedgerEntry)
        .filter(LedgerEntry.team_id == team_id, LedgerEntry.reference_type == "balance_request")
        .all()
    )


class TestFile:
    def test_file_pending_request(self, requests_svc, make_team):
        team = make_team(balance="10")
        request = requests_svc.file(team.id, "user-1", "40", "  receipt #881  ")
        assert request.status == BalanceRequestStatus.PENDING
        assert request.amount == Decimal("40")
        assert request.note == "receipt #881"
        assert requests_svc.pending_count() == 1
        assert [r.id for r in requests_svc.list_requests(team_id=team.id)] == [request.id]

    def test_validation(self, requests_svc, make_team):
        team = make_team()
        with pytest.raises(ValidationError):
            requests_svc.file(team.id, "user-1", "0", "receipt")
        with pytest.raises(ValidationError):
            requests_svc.file(team.id, "user-1", "0.004", "rounds to nothing")
        with pytest.raises(ValidationError):
            requests_svc.file(team.id, "user-1", "5", "   ")
        with pytest.raises(NotFound):
            requests_svc.file("missing", "user-1", "5", "receipt")


class TestApprove:
    def test_approval_credits_team(self, db, requests_svc, make_team, sink, bus):
        team = make_team(balance="10")
        request = requests_svc.file(team.id, "user-1", "25.50", "invoice 17")

        approved = requests_svc.approve(request.id, "Paid", "admin-1")

        assert approved.status == BalanceRequestStatus.APPROVED
        assert approved.admin_comment == "Paid"
        assert approved.resolved_by == "admin-1"
        ledger = LedgerService(db)
        assert ledger.get_balance(team.id) == Decimal("35.50")
        assert ledger.recompute_balance(team.id) == Decimal("35.50")
        [credit] = _credits(db, team.id)
        assert credit.reference_id == request.id
        assert credit.note.startswith(f"Request #{request.id[:8]}")
        assert bus.of_type(BalanceChanged)[-1].balance_after == Decimal("35.50")
        [notice] = sink.notifications
        assert notice.type == "balance_approved"
        assert notice.user_id == "user-1"
        assert "$25.50" in notice.message
        assert requests_svc.pending_count() == 0

    def test_second_decision_rejected_without_second_credit(self, db, requests_svc, make_team, sink):
        team = make_team(balance="0")
        request = requests_svc.file(team.id, "user-1", "10", "receipt")
        requests_svc.approve(request.id, None, "admin-1")

        with pytest.raises(AlreadyResolved):
            requests_svc.approve(request.id, None, "admin-2")
        with pytest.raises(AlreadyResolved):
            requests_svc.reject(request.id, "changed my mind", "admin-2")

        assert len(_credits(db, team.id)) == 1
        assert LedgerService(db).get_balance(team.id) == Decimal("10")
        assert len(sink.notifications) == 1

    def test_concurrent_approvers_only_one_wins(self, session_factory, requests_svc, make_team):
        team = make_team(balance="0")
        request = requests_svc.file(team.id, "user-1", "10", "receipt")
        s1, s2 = session_factory(), session_factory()
        try:
            BalanceRequestService(s1).approve(request.id, None, "admin-1")
            with pytest.raises(AlreadyResolved):
                BalanceRequestService(s2).approve(request.id, None, "admin-2")
            assert len(_credits(s2, team.id)) == 1
        finally:
            s1.close()
            s2.close()

    def test_ledger_failure_keeps_request_pending(self, db, requests_svc, make_team, sink):
        team = make_team(balance="0")
        request = requests_svc.file(team.id, "user-1", "10", "receipt")

        with patch.object(LedgerService, "apply_entry", side_effect=ConcurrencyConflict("busy")):
            with pytest.raises(ConcurrencyConflict):
                requests_svc.approve(request.id, None, "admin-1")

        assert requests_svc.get(request.id).status == BalanceRequestStatus.PENDING
        assert _credits(db, team.id) == []
        assert sink.batches == []


class TestReject:
    def test_rejection_requires_comment_and_moves_no_money(self, db, requests_svc, make_team, sink):
        team = make_team(balance="10")
        request = requests_svc.file(team.id, "user-1", "10", "receipt")
        with pytest.raises(ValidationError):
            requests_svc.reject(request.id, "  ", "admin-1")

        rejected = requests_svc.reject(request.id, "Payment not received", "admin-1")

        assert rejected.status == BalanceRequestStatus.REJECTED
        assert rejected.admin_comment == "Payment not received"
        assert _credits(db, team.id) == []
        assert LedgerService(db).get_balance(team.id) == Decimal("10")
        [notice] = sink.notifications
        assert notice.type == "balance_rejected"
        assert notice.data["reason"] == "Payment not received"
        assert [r.id for r in requests_svc.list_requests(status=BalanceRequestStatus.REJECTED)] == [request.id]

    def test_unknown_request(self, requests_svc):
        with pytest.raises(NotFound):
            requests_svc.reject("missing", "no", "admin-1")
