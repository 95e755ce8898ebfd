from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1)
    credit_limit: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    opening_balance: Decimal = Field(default=Decimal("0"), decimal_places=2)


class TeamOut(BaseModel):
    id: str
    name: str
    balance: Decimal
    credit_limit: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class CreditLimitUpdate(BaseModel):
    credit_limit: Decimal = Field(..., ge=0, decimal_places=2)


class TariffUpdate(BaseModel):
    html_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    react_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    manual_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    vip_extra_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    generation_cost_junior: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    generation_cost_senior: Decimal | None = Field(default=None, ge=0, decimal_places=2)


class BalanceAdjustment(BaseModel):
    amount: Decimal = Field(..., decimal_places=2)
    note: str = Field(..., min_length=1)


class LedgerEntryOut(BaseModel):
    id: str
    team_id: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    note: str
    actor_id: str | None
    reference_type: str | None
    reference_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class GenerationCost(BaseModel):
    ai_tier: str
    cost: Decimal
