"""
Interval Store

Data access for dated rules and reservations of a unit. Policy lives in the
evaluator, price resolver and reconciler; this module only answers "which
rows touch these dates" and guards the rule write-time invariants:

- start_date <= end_date
- kind payload present
- no two rules of the same kind on the same unit overlap
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Dict, Iterable, Sequence

from sqlalchemy.orm import Session

from ..exceptions import NotFoundError, ValidationError, RuleOverlapError, DatesOccupiedError
from ..models.unit import Unit
from ..models.availability_rule import AvailabilityRule, RuleKind
from ..models.reservation import Reservation, ReservationStatus
from ..models.channel_connection import ExternalEventSnapshot
from ..utils.date_ranges import closed_ranges_overlap
from ..utils.db_helpers import acquire_row_lock

logger = logging.getLogger(__name__)

RULE_KINDS = {kind.value for kind in RuleKind}


class IntervalStore:

    def __init__(self, db: Session):
        self.db = db

    # ==========================================
    # Units
    # ==========================================

    def get_unit(self, unit_id: str) -> Unit:
        unit = self.db.query(Unit).filter(Unit.id == unit_id).first()
        if not unit:
            raise NotFoundError("Unit", unit_id)
        return unit

    def lock_unit(self, unit_id: str) -> Unit:
        """
        Lock the unit row for the rest of the transaction. Every writer that
        puts a stay on the calendar (booking commit, shadow creation,
        keep_remote) goes through here first.
        """
        unit = acquire_row_lock(self.db, Unit, Unit.id == unit_id)
        if not unit:
            raise NotFoundError("Unit", unit_id)
        return unit

    # ==========================================
    # Rules
    # ==========================================

    def list_rules(self, unit_id: str, kind: Optional[str] = None) -> List[AvailabilityRule]:
        query = self.db.query(AvailabilityRule).filter(AvailabilityRule.unit_id == unit_id)
        if kind:
            query = query.filter(AvailabilityRule.kind == kind)
        return query.order_by(AvailabilityRule.start_date).all()

    def get_rule(self, rule_id: str) -> AvailabilityRule:
        rule = self.db.query(AvailabilityRule).filter(AvailabilityRule.id == rule_id).first()
        if not rule:
            raise NotFoundError("Rule", rule_id)
        return rule

    def rules_intersecting(
        self,
        unit_id: str,
        kind: str,
        check_in: date,
        check_out: date
    ) -> List[AvailabilityRule]:
        """
        Rules of one kind whose closed interval shares a night with the
        half-open stay [check_in, check_out).

        [start, end] vs [check_in, check_out) is the half-open test against
        [start, end + 1): start < check_out and check_in <= end.
        """
        return self.db.query(AvailabilityRule).filter(
            AvailabilityRule.unit_id == unit_id,
            AvailabilityRule.kind == kind,
            AvailabilityRule.start_date < check_out,
            AvailabilityRule.end_date >= check_in
        ).order_by(AvailabilityRule.start_date).all()

    def create_rule(
        self,
        unit_id: str,
        kind: str,
        start_date: date,
        end_date: date,
        reason: Optional[str] = None,
        min_nights: Optional[int] = None,
        price_per_night: Optional[Decimal] = None,
        commit: bool = True
    ) -> AvailabilityRule:
        self.get_unit(unit_id)
        self._validate_rule(kind, start_date, end_date, min_nights, price_per_night)
        self._check_same_kind_overlap(unit_id, kind, start_date, end_date)

        rule = AvailabilityRule(
            unit_id=unit_id,
            kind=kind,
            start_date=start_date,
            end_date=end_date,
            reason=reason if kind == RuleKind.BLOCKED.value else None,
            min_nights=min_nights if kind == RuleKind.MIN_STAY.value else None,
            price_per_night=price_per_night if kind == RuleKind.PRICE_OVERRIDE.value else None,
        )
        self.db.add(rule)
        if commit:
            self.db.commit()
            self.db.refresh(rule)
        else:
            self.db.flush()

        logger.info(f"Rule created: {kind} {start_date}..{end_date} on unit {unit_id}")
        return rule

    def update_rule(self, rule_id: str, changes: Dict, commit: bool = True) -> AvailabilityRule:
        """
        Apply a partial update. The kind of a rule is fixed; the merged
        result is validated as if it were new, excluding the rule itself
        from the overlap check.
        """
        rule = self.get_rule(rule_id)

        start_date = changes.get("start_date", rule.start_date)
        end_date = changes.get("end_date", rule.end_date)
        min_nights = changes.get("min_nights", rule.min_nights)
        price_per_night = changes.get("price_per_night", rule.price_per_night)

        self._validate_rule(rule.kind, start_date, end_date, min_nights, price_per_night)
        self._check_same_kind_overlap(rule.unit_id, rule.kind, start_date, end_date, exclude_id=rule.id)

        rule.start_date = start_date
        rule.end_date = end_date
        if rule.kind == RuleKind.BLOCKED.value and "reason" in changes:
            rule.reason = changes["reason"]
        if rule.kind == RuleKind.MIN_STAY.value:
            rule.min_nights = min_nights
        if rule.kind == RuleKind.PRICE_OVERRIDE.value:
            rule.price_per_night = price_per_night
        rule.updated_at = datetime.utcnow()

        if commit:
            self.db.commit()
            self.db.refresh(rule)
        return rule

    def bulk_block(
        self,
        unit_ids: Sequence[str],
        start_date: date,
        end_date: date,
        reason: Optional[str] = None,
        org_id: Optional[str] = None
    ) -> List[AvailabilityRule]:
        """
        Block [start_date, end_date] on several units in one transaction.

        All or nothing: refused when any unit is unknown (or outside org_id),
        already has a blocked rule touching the range, or holds a
        non-cancelled reservation sharing a night with it.
        """
        unit_ids = list(dict.fromkeys(uid for uid in unit_ids if uid))
        if not unit_ids:
            raise ValidationError("No units selected", field="unit_ids")
        if start_date > end_date:
            raise ValidationError("start_date must be on or before end_date", field="end_date")

        # Locks in id order
        units = [self.lock_unit(unit_id) for unit_id in sorted(unit_ids)]
        if org_id and any(unit.org_id != org_id for unit in units):
            raise ValidationError("Invalid unit selection", field="unit_ids")

        occupied = self.db.query(Reservation).filter(
            Reservation.unit_id.in_(unit_ids),
            Reservation.status != ReservationStatus.CANCELLED.value,
            Reservation.check_in <= end_date,
            Reservation.check_out > start_date
        ).order_by(Reservation.check_in).all()
        if occupied:
            raise DatesOccupiedError(
                f"Cannot block dates: {len(occupied)} existing reservation(s) found",
                reservation_ids=[r.id for r in occupied]
            )

        for unit_id in unit_ids:
            self._check_same_kind_overlap(unit_id, RuleKind.BLOCKED.value, start_date, end_date)

        rules = [
            AvailabilityRule(
                unit_id=unit_id,
                kind=RuleKind.BLOCKED.value,
                start_date=start_date,
                end_date=end_date,
                reason=reason,
            )
            for unit_id in unit_ids
        ]
        self.db.add_all(rules)
        self.db.commit()
        for rule in rules:
            self.db.refresh(rule)

        logger.info(f"Bulk block {start_date}..{end_date} on {len(rules)} units")
        return rules

    def delete_rule(self, rule_id: str) -> None:
        rule = self.get_rule(rule_id)
        self.db.delete(rule)
        self.db.commit()
        logger.info(f"Rule deleted: {rule_id}")

    def _validate_rule(
        self,
        kind: str,
        start_date: date,
        end_date: date,
        min_nights: Optional[int],
        price_per_night: Optional[Decimal]
    ) -> None:
        if kind not in RULE_KINDS:
            raise ValidationError(f"Unknown rule kind '{kind}'", field="kind")
        if start_date > end_date:
            raise ValidationError("start_date must be on or before end_date", field="end_date")
        if kind == RuleKind.MIN_STAY.value and (min_nights is None or min_nights < 1):
            raise ValidationError("min_stay rules need min_nights >= 1", field="min_nights")
        if kind == RuleKind.PRICE_OVERRIDE.value and (price_per_night is None or price_per_night < 0):
            raise ValidationError("price_override rules need price_per_night >= 0", field="price_per_night")

    def _check_same_kind_overlap(
        self,
        unit_id: str,
        kind: str,
        start_date: date,
        end_date: date,
        exclude_id: Optional[str] = None
    ) -> None:
        query = self.db.query(AvailabilityRule).filter(
            AvailabilityRule.unit_id == unit_id,
            AvailabilityRule.kind == kind,
            AvailabilityRule.start_date <= end_date,
            AvailabilityRule.end_date >= start_date
        )
        if exclude_id:
            query = query.filter(AvailabilityRule.id != exclude_id)

        for existing in query.all():
            if closed_ranges_overlap(start_date, end_date, existing.start_date, existing.end_date):
                raise RuleOverlapError(
                    f"Overlaps existing {kind} rule {existing.start_date}..{existing.end_date}",
                    conflicting_rule_id=existing.id
                )

    # ==========================================
    # Reservations
    # ==========================================

    def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.db.query(Reservation).filter(Reservation.id == reservation_id).first()
        if not reservation:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    def active_reservations_intersecting(
        self,
        unit_id: str,
        check_in: date,
        check_out: date,
        exclude_ids: Iterable[str] = ()
    ) -> List[Reservation]:
        """
        Non-cancelled reservations (local and shadow) sharing a night with
        [check_in, check_out): r.check_in < check_out and check_in < r.check_out.
        """
        query = self.db.query(Reservation).filter(
            Reservation.unit_id == unit_id,
            Reservation.status != ReservationStatus.CANCELLED.value,
            Reservation.check_in < check_out,
            Reservation.check_out > check_in
        )
        exclude_ids = [rid for rid in exclude_ids if rid]
        if exclude_ids:
            query = query.filter(Reservation.id.notin_(exclude_ids))
        return query.order_by(Reservation.check_in).all()

    def shadows_for_connection(self, connection_id: str) -> Dict[str, Reservation]:
        """All shadows of a connection keyed by external id, cancelled ones included"""
        rows = self.db.query(Reservation).filter(Reservation.connection_id == connection_id).all()
        return {row.external_id: row for row in rows}

    def active_reservations_for_unit(self, unit_id: str, from_date: date) -> List[Reservation]:
        return self.db.query(Reservation).filter(
            Reservation.unit_id == unit_id,
            Reservation.status != ReservationStatus.CANCELLED.value,
            Reservation.check_out >= from_date
        ).order_by(Reservation.check_in).all()

    # ==========================================
    # Feed snapshots
    # ==========================================

    def snapshots_for_connection(self, connection_id: str) -> Dict[str, ExternalEventSnapshot]:
        rows = self.db.query(ExternalEventSnapshot).filter(
            ExternalEventSnapshot.connection_id == connection_id
        ).all()
        return {row.external_id: row for row in rows}

    def replace_snapshots(self, connection_id: str, events: Iterable, seen_at: datetime) -> None:
        """
        Make the stored snapshot set match the fresh feed; caller commits.
        Rows are matched on external id: changed ones are updated in place,
        new ones inserted, vanished ones deleted.
        """
        stored = self.snapshots_for_connection(connection_id)
        fresh = {}
        for event in events:
            fresh.setdefault(event.external_id, event)

        for external_id, row in stored.items():
            if external_id not in fresh:
                self.db.delete(row)

        for external_id, event in fresh.items():
            row = stored.get(external_id)
            if row is None:
                self.db.add(ExternalEventSnapshot(
                    connection_id=connection_id,
                    external_id=external_id,
                    start_date=event.start_date,
                    end_date=event.end_date,
                    status=event.status,
                    summary=event.summary,
                    price=event.price,
                    last_seen_at=seen_at,
                ))
                continue

            row.start_date = event.start_date
            row.end_date = event.end_date
            row.status = event.status
            row.summary = event.summary
            row.price = event.price
            row.last_seen_at = seen_at
        self.db.flush()
