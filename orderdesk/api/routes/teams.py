"""
Teams: balance, credit limit, tariff, ledger history and manual adjustments.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderdesk.api.deps import get_current_actor
from orderdesk.db.session import get_db
from orderdesk.schemas.teams import (
    BalanceAdjustment,
    CreditLimitUpdate,
    GenerationCost,
    LedgerEntryOut,
    TariffUpdate,
    TeamCreate,
    TeamOut,
)
from orderdesk.services.ledger.service import LedgerService
from orderdesk.services.pricing.service import PricingResolver, Tariff

router = APIRouter(prefix="/teams", tags=["teams"])


@router.post("", response_model=TeamOut, status_code=201)
def create_team(payload: TeamCreate, db: Session = Depends(get_db), actor_id: str = Depends(get_current_actor)):
    return LedgerService(db).create_team(
        payload.name,
        credit_limit=payload.credit_limit,
        created_by=actor_id,
        opening_balance=payload.opening_balance,
    )


@router.get("/{team_id}", response_model=TeamOut)
def get_team(team_id: str, db: Session = Depends(get_db), actor_id: str = Depends(get_current_actor)):
    return LedgerService(db).get_team(team_id)


@router.put("/{team_id}/credit-limit", response_model=TeamOut)
def update_credit_limit(
    team_id: str,
    payload: CreditLimitUpdate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    return LedgerService(db).set_credit_limit(team_id, payload.credit_limit)


@router.get("/{team_id}/pricing", response_model=Tariff)
def get_pricing(team_id: str, db: Session = Depends(get_db), actor_id: str = Depends(get_current_actor)):
    LedgerService(db).get_team(team_id)
    return PricingResolver(db).get_tariff(team_id)


@router.get("/{team_id}/pricing/generation-cost", response_model=GenerationCost)
def generation_cost(
    team_id: str,
    ai_tier: str = Query(..., pattern="^(junior|senior)$"),
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    LedgerService(db).get_team(team_id)
    return GenerationCost(ai_tier=ai_tier, cost=PricingResolver(db).generation_cost(team_id, ai_tier))


@router.put("/{team_id}/pricing", response_model=Tariff)
def update_pricing(
    team_id: str,
    payload: TariffUpdate,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    return PricingResolver(db).set_tariff(team_id, **payload.model_dump(exclude_unset=True))


@router.get("/{team_id}/ledger", response_model=list[LedgerEntryOut])
def ledger_history(
    team_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return LedgerService(db).history(team_id, limit=limit, offset=offset)


@router.post("/{team_id}/adjustments", response_model=LedgerEntryOut, status_code=201)
def adjust_balance(
    team_id: str,
    payload: BalanceAdjustment,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    return LedgerService(db).adjust(team_id, payload.amount, payload.note, actor_id)
