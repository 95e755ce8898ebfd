from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text

from orderdesk.db.base import Base, JSONType


class WorkOrderStatus:
    REQUESTED = "requested"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    TERMINAL = (COMPLETED, CANCELLED)
    ALL = (REQUESTED, CLAIMED, COMPLETED, CANCELLED)


class WorkOrder(Base):
    __tablename__ = "work_orders"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, index=True)
    requester_id = Column(String, nullable=False, index=True)
    assignee_id = Column(String, nullable=True, index=True)  # set once, on claim
    status = Column(String, nullable=False, default=WorkOrderStatus.REQUESTED, index=True)
    price = Column(Numeric(12, 2), nullable=False)  # quoted at submission
    final_price = Column(Numeric(12, 2), nullable=True)  # charged at completion
    site_name = Column(String, nullable=False)
    prompt = Column(Text, nullable=False)
    language = Column(String, nullable=False, default="uk")
    work_type = Column(String, nullable=False, default="html")  # html | react
    ai_tier = Column(String, nullable=False, default="senior")  # junior | senior
    geo = Column(String, nullable=True)
    vip_prompt = Column(Text, nullable=True)  # set when ordered with the VIP surcharge
    note = Column(Text, nullable=True)  # from requester
    admin_note = Column(Text, nullable=True)  # from operator on completion
    attachments = Column(JSONType, nullable=False, default=list)
    artifact_ref = Column(String, nullable=True)
    files_data = Column(JSONType, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
