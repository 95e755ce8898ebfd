from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class FileAppealRequest(BaseModel):
    work_order_id: str
    reason: str = Field(..., min_length=1)
    refund_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    evidence_refs: list[str] = Field(default_factory=list, max_length=10)


class ResolveAppealRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    comment: str | None = None


class BulkResolveRequest(BaseModel):
    appeal_ids: list[str] = Field(..., min_length=1)
    decision: Literal["approved", "rejected"]
    comment: str | None = None


class AppealOut(BaseModel):
    id: str
    work_order_id: str
    team_id: str
    requester_id: str
    status: str
    refund_amount: Decimal
    reason: str
    evidence_refs: list[str]
    resolution_comment: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
