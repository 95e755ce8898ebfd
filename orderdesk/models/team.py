from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, Numeric, String

from orderdesk.db.base import Base


class Team(Base):
    __tablename__ = "teams"
    __table_args__ = (CheckConstraint("credit_limit >= 0", name="ck_teams_credit_limit_non_negative"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    name = Column(String, nullable=False)
    # Mutated only by LedgerService, together with a LedgerEntry
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    credit_limit = Column(Numeric(12, 2), nullable=False, default=0)
    # Bumped on every ledger write; conditional updates compare against it
    ledger_version = Column(Integer, nullable=False, default=0)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
