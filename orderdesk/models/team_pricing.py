from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String

from orderdesk.db.base import Base


class TeamPricing(Base):
    __tablename__ = "team_pricing"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    team_id = Column(String, ForeignKey("teams.id"), nullable=False, unique=True, index=True)
    html_price = Column(Numeric(12, 2), nullable=False, default=7)
    react_price = Column(Numeric(12, 2), nullable=False, default=9)
    # Flat price for manual orders; overrides the type prices when > 0
    manual_price = Column(Numeric(12, 2), nullable=True)
    vip_extra_price = Column(Numeric(12, 2), nullable=True)
    generation_cost_junior = Column(Numeric(12, 2), nullable=False, default=0)
    generation_cost_senior = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
