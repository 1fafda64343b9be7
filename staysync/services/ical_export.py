"""
Read-only iCalendar export of a unit's occupied dates, for channels that
import a feed from us. Guest details are left out of the public feed.
"""

from datetime import date, datetime
from typing import Optional

from icalendar import Calendar, Event
from sqlalchemy.orm import Session

from ..config import settings
from ..models.reservation import ReservationStatus
from .interval_store import IntervalStore

CONFIRMED_STATUSES = (ReservationStatus.CONFIRMED.value, ReservationStatus.CHECKED_IN.value)


def export_status(reservation_status: str) -> str:
    if reservation_status in CONFIRMED_STATUSES:
        return "CONFIRMED"
    return "TENTATIVE"


def build_unit_calendar(db: Session, unit_id: str, today: Optional[date] = None) -> bytes:
    """Non-cancelled reservations checking out today or later, as .ics bytes"""
    today = today or date.today()
    store = IntervalStore(db)
    unit = store.get_unit(unit_id)

    cal = Calendar()
    cal.add("prodid", settings.export_prodid)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")
    cal.add("x-wr-calname", unit.name)

    stamp = datetime.utcnow()
    host = settings.export_base_url.split("//")[-1].strip("/") or "staysync"

    for reservation in store.active_reservations_for_unit(unit_id, today):
        event = Event()
        event.add("uid", f"{reservation.id}@{host}")
        event.add("dtstamp", stamp)
        event.add("dtstart", reservation.check_in)
        event.add("dtend", reservation.check_out)
        event.add("summary", f"{unit.name} - Reserved")
        event.add("status", export_status(reservation.status))
        event.add("transp", "OPAQUE")
        if reservation.updated_at:
            event.add("last-modified", reservation.updated_at)
        cal.add_component(event)

    return cal.to_ical()
