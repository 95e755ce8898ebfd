"""
Per-team balance ledger.

Every balance change is a single unit of (Team.balance update, LedgerEntry insert).
The balance update is conditional on the team's ledger_version as read, so two
in-flight mutations of the same team can never overwrite each other; the loser
gets ConcurrencyConflict and must retry.

Methods flush but do not commit: the caller owns the transaction so the ledger
write and the state transition it pays for land together or not at all.
"""
from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from orderdesk.core.config import settings
from orderdesk.models.ledger_entry import LedgerEntry
from orderdesk.models.team import Team
from orderdesk.services.errors import ConcurrencyConflict, NotFound, StateConflict, ValidationError
from orderdesk.services.events import BalanceChanged, EventBus, event_bus
from orderdesk.utils.metrics import ledger_conflicts_total, ledger_entries_total

logger = logging.getLogger(__name__)

Reference = tuple[str, str | None]

CENTS = Decimal("0.01")


def balance_changed(entry: LedgerEntry) -> BalanceChanged:
    return BalanceChanged(
        team_id=entry.team_id,
        amount=Decimal(entry.amount),
        balance_before=Decimal(entry.balance_before),
        balance_after=Decimal(entry.balance_after),
        entry_id=entry.id,
    )


class LedgerService:
    def __init__(self, db: Session, events: EventBus | None = None) -> None:
        self.db = db
        self.events = events or event_bus

    # ---------- teams ----------

    def create_team(
        self,
        name: str,
        credit_limit: Decimal | int | str = 0,
        created_by: str | None = None,
        opening_balance: Decimal | int | str = 0,
    ) -> Team:
        if not name or not name.strip():
            raise ValidationError("team name is required")
        credit_limit = Decimal(credit_limit).quantize(CENTS, rounding=ROUND_HALF_UP)
        if credit_limit < 0:
            raise ValidationError("credit_limit must be >= 0")
        team = Team(name=name.strip(), balance=Decimal("0"), credit_limit=credit_limit, created_by=created_by)
        self.db.add(team)
        self.db.flush()
        entry = None
        opening_balance = Decimal(opening_balance).quantize(CENTS, rounding=ROUND_HALF_UP)
        if opening_balance != 0:
            _, entry = self.apply_entry(team.id, opening_balance, "Opening balance", created_by)
        self.db.commit()
        self.db.refresh(team)
        if entry is not None:
            self.events.emit(balance_changed(entry))
        logger.info("team_created", extra={"team_id": team.id, "actor_id": created_by})
        return team

    def get_team(self, team_id: str) -> Team:
        team = self.db.query(Team).filter(Team.id == team_id).one_or_none()
        if team is None:
            raise NotFound(f"team {team_id} not found")
        return team

    def set_credit_limit(self, team_id: str, credit_limit: Decimal | int | str) -> Team:
        credit_limit = Decimal(credit_limit).quantize(CENTS, rounding=ROUND_HALF_UP)
        if credit_limit < 0:
            raise ValidationError("credit_limit must be >= 0")
        team = self.get_team(team_id)
        team.credit_limit = credit_limit
        self.db.add(team)
        self.db.commit()
        self.db.refresh(team)
        logger.info("credit_limit_updated", extra={"team_id": team_id, "amount": str(credit_limit)})
        return team

    # ---------- ledger ----------

    def get_balance(self, team_id: str) -> Decimal:
        return Decimal(self.get_team(team_id).balance)

    def available_credit(self, team: Team) -> Decimal:
        return Decimal(team.balance) + Decimal(team.credit_limit)

    def apply_entry(
        self,
        team_id: str,
        amount: Decimal | int | str,
        note: str,
        actor_id: str | None,
        reference: Reference | None = None,
    ) -> tuple[Decimal, LedgerEntry]:
        """Move the team's balance by `amount` and record it. Flushes, does not commit."""
        amount = Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)
        if reference is not None and reference[1] is not None and self._reference_exists(reference):
            raise StateConflict(f"ledger entry for {reference[0]} {reference[1]} already exists")

        team = self._read_team(team_id)
        expected_version = team.ledger_version
        balance_before = Decimal(team.balance)
        balance_after = balance_before + amount

        result = self.db.execute(
            update(Team)
            .where(Team.id == team_id, Team.ledger_version == expected_version)
            .values(balance=balance_after, ledger_version=expected_version + 1)
        )
        if result.rowcount != 1:
            ledger_conflicts_total.inc()
            logger.warning("ledger_conflict", extra={"team_id": team_id, "amount": str(amount)})
            raise ConcurrencyConflict(f"balance of team {team_id} changed concurrently")

        entry = LedgerEntry(
            team_id=team_id,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            note=note or "",
            actor_id=actor_id,
            reference_type=reference[0] if reference else None,
            reference_id=reference[1] if reference else None,
        )
        self.db.add(entry)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise StateConflict(f"duplicate ledger reference {reference}") from e

        ledger_entries_total.labels(direction="credit" if amount > 0 else "debit").inc()
        logger.info(
            "ledger_entry_applied",
            extra={
                "team_id": team_id,
                "amount": str(amount),
                "balance_before": str(balance_before),
                "balance_after": str(balance_after),
                "actor_id": actor_id,
            },
        )
        return balance_after, entry

    def apply_entry_with_retry(
        self,
        team_id: str,
        amount: Decimal | int | str,
        note: str,
        actor_id: str | None,
        reference: Reference | None = None,
        max_attempts: int | None = None,
    ) -> tuple[Decimal, LedgerEntry]:
        """apply_entry inside a SAVEPOINT, retried on ConcurrencyConflict."""
        attempts = max_attempts or settings.ledger_max_retries
        for attempt in range(1, attempts + 1):
            try:
                with self.db.begin_nested():
                    return self.apply_entry(team_id, amount, note, actor_id, reference)
            except ConcurrencyConflict:
                if attempt >= attempts:
                    raise
                logger.info("ledger_retry", extra={"team_id": team_id, "attempt": attempt})
        raise ConcurrencyConflict(f"balance of team {team_id} changed concurrently")

    def adjust(self, team_id: str, amount: Decimal | int | str, note: str, actor_id: str | None) -> LedgerEntry:
        """Administrator top-up or correction. Commits."""
        if not note or not note.strip():
            raise ValidationError("note is required for manual adjustments")
        amount = Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)
        if amount == 0:
            raise ValidationError("adjustment amount must be non-zero")
        try:
            _, entry = self.apply_entry_with_retry(team_id, amount, note.strip(), actor_id, ("adjustment", None))
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.events.emit(balance_changed(entry))
        return entry

    def history(self, team_id: str, limit: int = 50, offset: int = 0) -> list[LedgerEntry]:
        self.get_team(team_id)
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.team_id == team_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def recompute_balance(self, team_id: str) -> Decimal:
        """Sum of all entries for the team; equals Team.balance when the ledger is consistent."""
        total = (
            self.db.query(func.coalesce(func.sum(LedgerEntry.amount), 0))
            .filter(LedgerEntry.team_id == team_id)
            .scalar()
        )
        return Decimal(str(total)).quantize(CENTS)

    def _read_team(self, team_id: str) -> Team:
        team = (
            self.db.query(Team)
            .filter(Team.id == team_id)
            .populate_existing()
            .one_or_none()
        )
        if team is None:
            raise NotFound(f"team {team_id} not found")
        return team

    def _reference_exists(self, reference: Reference) -> bool:
        stmt = (
            self.db.query(LedgerEntry.id)
            .filter(
                LedgerEntry.reference_type == reference[0],
                LedgerEntry.reference_id == reference[1],
            )
            .exists()
        )
        return self.db.query(stmt).scalar() or False
