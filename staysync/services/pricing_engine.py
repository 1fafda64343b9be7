"""
Pricing Engine Service

Computes the price of a stay [check_in, check_out):
- Each night takes the price_override rule covering it, else the unit's
  base price
- accommodation_total = sum of nightly prices
- tourist_tax = per-night tax x nights
- total = accommodation_total + cleaning_fee + tourist_tax

When several overrides cover one night the tie-break policy decides:
"latest_created" (default) or "narrowest_interval", with ties in the
latter going to the most recently created rule.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Dict, Any
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import PricingError
from ..models.availability_rule import AvailabilityRule, RuleKind
from ..utils.date_ranges import iter_nights, nights_between, rule_covers_night
from .interval_store import IntervalStore

TWO_PLACES = Decimal("0.01")

TIE_BREAK_LATEST_CREATED = "latest_created"
TIE_BREAK_NARROWEST_INTERVAL = "narrowest_interval"


def quantize(value) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass
class NightlyPrice:
    """Resolved price for a single night"""
    date: date
    price: Decimal
    source: str  # "base" or "override"
    rule_id: Optional[str] = None


@dataclass
class PriceBreakdown:
    unit_id: str
    check_in: date
    check_out: date
    nights: int
    accommodation_total: Decimal
    cleaning_fee: Decimal
    tourist_tax: Decimal
    total: Decimal
    currency: str
    average_per_night: Decimal
    nightly: List[NightlyPrice]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "check_in": self.check_in.isoformat(),
            "check_out": self.check_out.isoformat(),
            "nights": self.nights,
            "accommodation_total": str(self.accommodation_total),
            "cleaning_fee": str(self.cleaning_fee),
            "tourist_tax": str(self.tourist_tax),
            "total": str(self.total),
            "currency": self.currency,
            "average_per_night": str(self.average_per_night),
            "nightly": [
                {"date": n.date.isoformat(), "price": str(n.price), "source": n.source, "rule_id": n.rule_id}
                for n in self.nightly
            ],
        }


class PricingEngine:
    """
    Per-night price resolution for a unit.

    The engine reads rules fresh on every call; prices are never cached
    between quotes.
    """

    def __init__(self, db: Session, tie_break: Optional[str] = None):
        self.db = db
        self.store = IntervalStore(db)
        self.tie_break = tie_break or settings.price_override_tie_break

    def pick_override(self, candidates: List[AvailabilityRule]) -> AvailabilityRule:
        """Choose one override among several covering the same night"""
        def created_key(rule: AvailabilityRule):
            return (rule.created_at, rule.id)

        if self.tie_break == TIE_BREAK_NARROWEST_INTERVAL:
            narrowest = min((rule.end_date - rule.start_date).days for rule in candidates)
            candidates = [rule for rule in candidates if (rule.end_date - rule.start_date).days == narrowest]

        return max(candidates, key=created_key)

    def resolve_night(
        self,
        night: date,
        overrides: List[AvailabilityRule],
        base_price: Optional[Decimal]
    ) -> NightlyPrice:
        covering = [rule for rule in overrides if rule_covers_night(rule.start_date, rule.end_date, night)]
        if covering:
            rule = self.pick_override(covering)
            return NightlyPrice(date=night, price=quantize(rule.price_per_night), source="override", rule_id=rule.id)

        if base_price is None:
            raise PricingError(f"No price for the night of {night.isoformat()}", field="check_in")

        return NightlyPrice(date=night, price=quantize(base_price), source="base")

    def calculate(self, unit_id: str, check_in: date, check_out: date) -> PriceBreakdown:
        nights = nights_between(check_in, check_out)
        if nights <= 0:
            raise PricingError("Stay must be at least one night", field="check_out")

        unit = self.store.get_unit(unit_id)
        overrides = self.store.rules_intersecting(unit_id, RuleKind.PRICE_OVERRIDE.value, check_in, check_out)
        base_price = quantize(unit.base_price) if unit.base_price is not None else None

        nightly = [self.resolve_night(night, overrides, base_price) for night in iter_nights(check_in, check_out)]

        accommodation_total = quantize(sum((n.price for n in nightly), Decimal("0")))
        cleaning_fee = quantize(unit.cleaning_fee or 0)
        tourist_tax = quantize(Decimal(str(unit.tourist_tax or 0)) * nights)
        total = accommodation_total + cleaning_fee + tourist_tax

        return PriceBreakdown(
            unit_id=unit_id,
            check_in=check_in,
            check_out=check_out,
            nights=nights,
            accommodation_total=accommodation_total,
            cleaning_fee=cleaning_fee,
            tourist_tax=tourist_tax,
            total=total,
            currency=unit.currency,
            average_per_night=quantize(accommodation_total / nights),
            nightly=nightly,
        )


def get_pricing_engine(db: Session, tie_break: Optional[str] = None) -> PricingEngine:
    """Factory function to get pricing engine instance"""
    return PricingEngine(db, tie_break=tie_break)
