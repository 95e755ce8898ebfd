from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class BalanceRequestCreate(BaseModel):
    team_id: str
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    note: str = Field(..., min_length=1)


class BalanceRequestDecision(BaseModel):
    comment: str | None = None


class BalanceRequestOut(BaseModel):
    id: str
    team_id: str
    requester_id: str
    amount: Decimal
    note: str
    status: str
    admin_comment: str | None
    resolved_by: str | None
    resolved_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
