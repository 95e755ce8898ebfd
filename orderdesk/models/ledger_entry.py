from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, UniqueConstraint

from orderdesk.db.base import Base


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    # One debit per completed order, one credit per approved appeal
    __table_args__ = (UniqueConstraint("reference_type", "reference_id", name="uq_ledger_reference"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    balance_before = Column(Numeric(12, 2), nullable=False)
    balance_after = Column(Numeric(12, 2), nullable=False)
    note = Column(String, nullable=False, default="")
    actor_id = Column(String, nullable=True)
    reference_type = Column(String, nullable=True)  # work_order, appeal, adjustment
    reference_id = Column(String, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
