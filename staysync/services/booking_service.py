"""
Booking Commit Path

Evaluate-then-insert as one transaction: the unit row is locked, the
availability check runs again, and the reservation is written before the
lock is released. A quote taken earlier is never trusted.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..exceptions import ValidationError, DatesUnavailableError
from ..models.reservation import Reservation, ReservationStatus, PaymentStatus, ReservationSource
from ..utils.logging_config import get_logger
from .availability_service import AvailabilityEvaluator, validate_stay_range
from .interval_store import IntervalStore
from .pricing_engine import PricingEngine

logger = get_logger(__name__)

BOOKABLE_STATUSES = (ReservationStatus.PENDING.value, ReservationStatus.CONFIRMED.value)


class BookingService:

    def __init__(self, db: Session):
        self.db = db
        self.store = IntervalStore(db)
        self.evaluator = AvailabilityEvaluator(db)
        self.pricing = PricingEngine(db)

    def create_reservation(
        self,
        unit_id: str,
        check_in: date,
        check_out: date,
        guests_count: int = 1,
        guest_name: Optional[str] = None,
        guest_email: Optional[str] = None,
        status: str = ReservationStatus.CONFIRMED.value,
        payment_status: str = PaymentStatus.PENDING.value,
        notes: Optional[str] = None
    ) -> Reservation:
        validate_stay_range(check_in, check_out)
        if status not in BOOKABLE_STATUSES:
            raise ValidationError("New reservations must be pending or confirmed", field="status")

        try:
            unit = self.store.lock_unit(unit_id)

            if guests_count < (unit.min_guests or 1):
                raise ValidationError(f"At least {unit.min_guests} guests required", field="guests_count")
            if unit.max_guests is not None and guests_count > unit.max_guests:
                raise ValidationError(f"At most {unit.max_guests} guests allowed", field="guests_count")

            verdict = self.evaluator.check(unit_id, check_in, check_out)
            if not verdict.available:
                raise DatesUnavailableError(verdict)

            breakdown = self.pricing.calculate(unit_id, check_in, check_out)

            reservation = Reservation(
                unit_id=unit_id,
                check_in=check_in,
                check_out=check_out,
                guests_count=guests_count,
                guest_name=guest_name,
                guest_email=guest_email,
                notes=notes,
                status=status,
                payment_status=payment_status,
                source=ReservationSource.DIRECT.value,
                total_price=breakdown.total,
            )
            self.db.add(reservation)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(reservation)
        logger.reservation_created(reservation.id, unit_id, check_in, check_out, reservation.source)
        return reservation

    def cancel_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.store.get_reservation(reservation_id)
        if reservation.is_active:
            reservation.status = ReservationStatus.CANCELLED.value
            reservation.updated_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(reservation)
            logger.info(f"Reservation cancelled: {reservation_id}")
        return reservation
