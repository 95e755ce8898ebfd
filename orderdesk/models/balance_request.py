from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text

from orderdesk.db.base import Base


class BalanceRequestStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BalanceRequest(Base):
    __tablename__ = "balance_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    requester_id = Column(String, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    note = Column(Text, nullable=False)  # payment receipt link or reference
    status = Column(String, nullable=False, default=BalanceRequestStatus.PENDING, index=True)
    admin_comment = Column(Text, nullable=True)
    resolved_by = Column(String, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
