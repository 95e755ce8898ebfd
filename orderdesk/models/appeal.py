from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Index, Numeric, String, Text, text

from orderdesk.db.base import Base, JSONType


class AppealStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    DECISIONS = (APPROVED, REJECTED)


class Appeal(Base):
    __tablename__ = "appeals"
    # At most one pending appeal per work order
    __table_args__ = (
        Index(
            "uq_appeals_one_pending_per_order",
            "work_order_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    work_order_id = Column(String, ForeignKey("work_orders.id"), nullable=False, index=True)
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    requester_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=AppealStatus.PENDING, index=True)
    refund_amount = Column(Numeric(12, 2), nullable=False, default=0)
    reason = Column(Text, nullable=False)
    evidence_refs = Column(JSONType, nullable=False, default=list)
    resolution_comment = Column(Text, nullable=True)
    resolved_by = Column(String, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
