"""
Tariff-based pricing for manual work orders.

Lookup is pure: a manual override price wins when set and > 0, otherwise the
type-specific base price applies. Teams without a tariff row get the system
defaults from settings. Snapshots are cached per team and dropped on update.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal

from cachetools import TTLCache
from pydantic import BaseModel
from sqlalchemy.orm import Session

from orderdesk.core.config import settings
from orderdesk.models.team import Team
from orderdesk.models.team_pricing import TeamPricing
from orderdesk.services.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

WORK_TYPES = ("html", "react")
AI_TIERS = ("junior", "senior")

TARIFF_FIELDS = (
    "html_price",
    "react_price",
    "manual_price",
    "vip_extra_price",
    "generation_cost_junior",
    "generation_cost_senior",
)


class Tariff(BaseModel):
    """Immutable snapshot of a team's price table."""

    team_id: str
    html_price: Decimal
    react_price: Decimal
    manual_price: Decimal | None = None
    vip_extra_price: Decimal
    generation_cost_junior: Decimal
    generation_cost_senior: Decimal
    is_default: bool = False

    model_config = {"frozen": True}


def default_tariff(team_id: str) -> Tariff:
    return Tariff(
        team_id=team_id,
        html_price=settings.default_html_price,
        react_price=settings.default_react_price,
        manual_price=None,
        vip_extra_price=settings.default_vip_extra_price,
        generation_cost_junior=settings.default_generation_cost_junior,
        generation_cost_senior=settings.default_generation_cost_senior,
        is_default=True,
    )


def price_for(tariff: Tariff, work_type: str) -> Decimal:
    """Price of one order under `tariff`. No I/O."""
    if work_type not in WORK_TYPES:
        raise ValidationError(f"unknown work_type: {work_type}")
    if tariff.manual_price is not None and tariff.manual_price > 0:
        return tariff.manual_price
    if work_type == "react":
        return tariff.react_price
    return tariff.html_price


_cache: TTLCache = TTLCache(maxsize=settings.pricing_cache_size, ttl=settings.pricing_cache_ttl_seconds)
_cache_lock = threading.Lock()


def invalidate_tariff_cache(team_id: str | None = None) -> None:
    with _cache_lock:
        if team_id is None:
            _cache.clear()
        else:
            _cache.pop(team_id, None)


class PricingResolver:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_tariff(self, team_id: str) -> Tariff:
        with _cache_lock:
            cached = _cache.get(team_id)
        if cached is not None:
            return cached
        row = self.db.query(TeamPricing).filter(TeamPricing.team_id == team_id).one_or_none()
        tariff = self._snapshot(row) if row else default_tariff(team_id)
        with _cache_lock:
            _cache[team_id] = tariff
        return tariff

    def resolve(self, team_id: str, work_type: str, ai_tier: str | None = None) -> Decimal:
        """Price of one order of `work_type` for the team.

        `ai_tier` does not change the sale price; it is accepted so callers can pass
        order attributes through unchanged.
        """
        if ai_tier is not None and ai_tier not in AI_TIERS:
            raise ValidationError(f"unknown ai_tier: {ai_tier}")
        return price_for(self.get_tariff(team_id), work_type)

    def vip_extra(self, team_id: str) -> Decimal:
        tariff = self.get_tariff(team_id)
        return tariff.vip_extra_price

    def generation_cost(self, team_id: str, ai_tier: str) -> Decimal:
        """Internal cost figure of one generation on the given tier."""
        tariff = self.get_tariff(team_id)
        if ai_tier == "junior":
            return tariff.generation_cost_junior
        if ai_tier == "senior":
            return tariff.generation_cost_senior
        raise ValidationError(f"unknown ai_tier: {ai_tier}")

    def set_tariff(self, team_id: str, **fields) -> Tariff:
        """Create or update the team's tariff row (administrator action)."""
        unknown = set(fields) - set(TARIFF_FIELDS)
        if unknown:
            raise ValidationError(f"unknown tariff fields: {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            if value is not None and Decimal(value) < 0:
                raise ValidationError(f"{name} must be >= 0")
        if self.db.query(Team.id).filter(Team.id == team_id).one_or_none() is None:
            raise NotFound(f"team {team_id} not found")

        row = self.db.query(TeamPricing).filter(TeamPricing.team_id == team_id).one_or_none()
        if row is None:
            defaults = default_tariff(team_id)
            row = TeamPricing(
                team_id=team_id,
                html_price=defaults.html_price,
                react_price=defaults.react_price,
                vip_extra_price=defaults.vip_extra_price,
                generation_cost_junior=defaults.generation_cost_junior,
                generation_cost_senior=defaults.generation_cost_senior,
            )
        for name, value in fields.items():
            setattr(row, name, Decimal(value) if value is not None else None)
        row.updated_at = datetime.now(timezone.utc)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        invalidate_tariff_cache(team_id)
        logger.info("tariff_updated", extra={"team_id": team_id})
        return self._snapshot(row)

    @staticmethod
    def _snapshot(row: TeamPricing) -> Tariff:
        return Tariff(
            team_id=row.team_id,
            html_price=Decimal(row.html_price),
            react_price=Decimal(row.react_price),
            manual_price=Decimal(row.manual_price) if row.manual_price is not None else None,
            vip_extra_price=(
                Decimal(row.vip_extra_price)
                if row.vip_extra_price is not None
                else settings.default_vip_extra_price
            ),
            generation_cost_junior=Decimal(row.generation_cost_junior),
            generation_cost_senior=Decimal(row.generation_cost_senior),
        )
