"""
Availability Evaluator

Decides whether a unit can take a stay [check_in, check_out). Checks run in
a fixed order and stop at the first failure:

1. date range validity (invalid input raises)
2. blocked rules            -> reason "blocked"
3. existing reservations    -> reason "reserved"
4. min_stay rules           -> reason "minimum stay not met"

An unavailable verdict is a normal result, not an exception. The evaluator
never writes and never caches; the booking commit path calls it again
inside its own transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Dict, Any

from sqlalchemy.orm import Session

from ..exceptions import ValidationError
from ..models.availability_rule import RuleKind
from ..utils.date_ranges import nights_between
from .interval_store import IntervalStore

logger = logging.getLogger(__name__)

REASON_BLOCKED = "blocked"
REASON_RESERVED = "reserved"
REASON_MIN_STAY = "minimum stay not met"


@dataclass
class AvailabilityVerdict:
    """Result of an availability check"""
    unit_id: str
    check_in: date
    check_out: date
    available: bool
    reason: Optional[str] = None
    blocking_rules: List[Dict[str, Any]] = field(default_factory=list)
    conflicting_reservation_ids: List[str] = field(default_factory=list)
    min_nights: Optional[int] = None
    nights: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "check_in": self.check_in.isoformat(),
            "check_out": self.check_out.isoformat(),
            "available": self.available,
            "reason": self.reason,
            "blocking_rules": self.blocking_rules,
            "conflicting_reservation_ids": self.conflicting_reservation_ids,
            "min_nights": self.min_nights,
            "nights": self.nights,
        }


def _rule_summary(rule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "kind": rule.kind,
        "start_date": rule.start_date.isoformat(),
        "end_date": rule.end_date.isoformat(),
        "reason": rule.reason,
        "min_nights": rule.min_nights,
    }


def validate_stay_range(check_in: date, check_out: date) -> None:
    if check_out <= check_in:
        raise ValidationError("check_out must be after check_in", field="check_out")


class AvailabilityEvaluator:

    def __init__(self, db: Session):
        self.db = db
        self.store = IntervalStore(db)

    def check(
        self,
        unit_id: str,
        check_in: date,
        check_out: date,
        exclude_reservation_ids: Optional[List[str]] = None
    ) -> AvailabilityVerdict:
        validate_stay_range(check_in, check_out)
        self.store.get_unit(unit_id)

        nights = nights_between(check_in, check_out)
        verdict = AvailabilityVerdict(
            unit_id=unit_id,
            check_in=check_in,
            check_out=check_out,
            available=False,
            nights=nights,
        )

        blocked = self.store.rules_intersecting(unit_id, RuleKind.BLOCKED.value, check_in, check_out)
        if blocked:
            verdict.reason = REASON_BLOCKED
            verdict.blocking_rules = [_rule_summary(rule) for rule in blocked]
            return verdict

        reserved = self.store.active_reservations_intersecting(
            unit_id, check_in, check_out, exclude_ids=exclude_reservation_ids or ()
        )
        if reserved:
            verdict.reason = REASON_RESERVED
            verdict.conflicting_reservation_ids = [r.id for r in reserved]
            return verdict

        # Any intersecting min_stay rule binds; the strictest one is reported
        min_stay_rules = self.store.rules_intersecting(unit_id, RuleKind.MIN_STAY.value, check_in, check_out)
        binding = [rule for rule in min_stay_rules if rule.min_nights > nights]
        if binding:
            strictest = max(binding, key=lambda rule: rule.min_nights)
            verdict.reason = REASON_MIN_STAY
            verdict.min_nights = strictest.min_nights
            verdict.blocking_rules = [_rule_summary(strictest)]
            return verdict

        verdict.available = True
        return verdict


def get_availability_evaluator(db: Session) -> AvailabilityEvaluator:
    """Factory function to get availability evaluator instance"""
    return AvailabilityEvaluator(db)
