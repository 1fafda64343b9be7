"""
Reservations API Router

Booking commit path and cancellation. The commit re-checks availability
inside its own transaction; a 409 carries the verdict.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.booking_service import BookingService
from ..schemas.reservation import ReservationCreate, ReservationResponse
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/reservations", tags=["Reservations"])


@router.post("", response_model=ReservationResponse, status_code=201)
@limiter.limit(get_rate_limit("reservation_create"))
async def create_reservation(
    request: Request,
    booking: ReservationCreate,
    db: Session = Depends(get_db)
):
    return BookingService(db).create_reservation(
        unit_id=booking.unit_id,
        check_in=booking.check_in,
        check_out=booking.check_out,
        guests_count=booking.guests_count,
        guest_name=booking.guest_name,
        guest_email=booking.guest_email,
        status=booking.status,
        payment_status=booking.payment_status,
        notes=booking.notes,
    )


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(reservation_id: str, db: Session = Depends(get_db)):
    return BookingService(db).cancel_reservation(reservation_id)
