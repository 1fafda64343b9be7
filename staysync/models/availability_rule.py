"""
Availability Rule Model

Dated rules attached to a unit. Unlike reservations, rule intervals are
closed: a rule for 2025-07-01..2025-07-10 covers the night of the 10th.

Kinds:
- blocked: owner block, optional human reason
- min_stay: minimum number of nights for stays touching the interval
- price_override: nightly price replacing the unit's base price
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Date, Numeric, Text, ForeignKey, DateTime, Integer, Index
from sqlalchemy.orm import relationship
from ..database import Base


class RuleKind(str, enum.Enum):
    BLOCKED = "blocked"
    MIN_STAY = "min_stay"
    PRICE_OVERRIDE = "price_override"


class AvailabilityRule(Base):
    __tablename__ = "availability_rules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="CASCADE"), nullable=False)
    kind = Column(String(20), nullable=False)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)  # inclusive

    # Kind-specific payload
    reason = Column(Text, nullable=True)                   # blocked
    min_nights = Column(Integer, nullable=True)            # min_stay
    price_per_night = Column(Numeric(10, 2), nullable=True)  # price_override

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    unit = relationship("Unit", back_populates="rules")

    __table_args__ = (
        Index("ix_rule_unit_kind_dates", "unit_id", "kind", "start_date", "end_date"),
    )

    def __repr__(self):
        return f"<AvailabilityRule {self.kind} {self.start_date}..{self.end_date}>"
