"""
Calendar Feed Ingestor

Fetches a connection's iCalendar feed and normalises it into ExternalEvent
records keyed by the feed's UID.

- HTTPS is enforced when the connection is created, not here
- Fetch is bounded by a timeout and a response size cap
- Any VEVENT that cannot be read fails the whole feed; a partial parse
  would look like cancellations to the reconciler
- Network and parse failures both surface as FeedError, cause chained
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Dict, Union

import httpx
from icalendar import Calendar

from ..config import settings
from ..exceptions import FeedFetchError, FeedParseError

logger = logging.getLogger(__name__)


EVENT_CONFIRMED = "confirmed"
EVENT_CANCELLED = "cancelled"
EVENT_TENTATIVE = "tentative"

# Platform status vocabulary -> normalised status.
# Anything missing from this table is treated as confirmed so that an
# unknown-but-present booking still holds its dates.
STATUS_MAP: Dict[str, str] = {
    "CONFIRMED": EVENT_CONFIRMED,
    "BOOKED": EVENT_CONFIRMED,
    "RESERVED": EVENT_CONFIRMED,
    "CANCELLED": EVENT_CANCELLED,
    "CANCELED": EVENT_CANCELLED,
    "DECLINED": EVENT_CANCELLED,
    "TENTATIVE": EVENT_TENTATIVE,
    "NEEDS-ACTION": EVENT_TENTATIVE,
    "PENDING": EVENT_TENTATIVE,
    "INQUIRY": EVENT_TENTATIVE,
}

PRICE_PROPERTIES = ("X-PRICE", "X-TOTAL-PRICE")


@dataclass
class ExternalEvent:
    """One booking as described by an external feed. end_date is exclusive."""
    external_id: str
    start_date: date
    end_date: date
    status: str
    summary: Optional[str] = None
    price: Optional[Decimal] = None
    last_seen_at: Optional[datetime] = None

    @property
    def holds_dates(self) -> bool:
        return self.status != EVENT_CANCELLED

    def to_dict(self) -> Dict:
        return {
            "external_id": self.external_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status,
            "summary": self.summary,
            "price": str(self.price) if self.price is not None else None,
        }


def normalize_status(raw: Optional[str]) -> str:
    if not raw:
        return EVENT_CONFIRMED
    return STATUS_MAP.get(str(raw).strip().upper(), EVENT_CONFIRMED)


def _to_date(value) -> Optional[date]:
    """datetime or date -> date (all-day semantics)"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def _read_date(component, name: str, uid: str):
    """Date value of a DTSTART/DTEND property, None when absent"""
    prop = component.get(name)
    if prop is None:
        return None
    try:
        value = _to_date(prop.dt)
    except (ValueError, AttributeError) as e:
        raise FeedParseError(f"VEVENT {uid} has an unreadable {name}") from e
    if value is None:
        raise FeedParseError(f"VEVENT {uid} has an unreadable {name}")
    return value


def _read_length(component, uid: str) -> timedelta:
    """Stay length from DURATION, whole days, one night when absent"""
    duration = component.get("DURATION")
    if duration is None:
        return timedelta(days=1)
    try:
        length = duration.dt
    except (ValueError, AttributeError) as e:
        raise FeedParseError(f"VEVENT {uid} has an unreadable DURATION") from e
    if not isinstance(length, timedelta):
        raise FeedParseError(f"VEVENT {uid} has an unreadable DURATION")
    return timedelta(days=max(length.days, 1))


def _read_price(component) -> Optional[Decimal]:
    for name in PRICE_PROPERTIES:
        raw = component.get(name)
        if raw is None:
            continue
        try:
            return Decimal(str(raw).strip()).quantize(Decimal("0.01"))
        except InvalidOperation:
            logger.warning(f"Ignoring unreadable {name} value: {raw!r}")
    return None


def parse_feed(content: Union[str, bytes], seen_at: Optional[datetime] = None) -> List[ExternalEvent]:
    """
    Parse iCalendar text into events, in feed order.

    Unknown properties and non-VEVENT components are ignored. Duplicate UIDs
    keep their first occurrence.
    """
    seen_at = seen_at or datetime.utcnow()

    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    if "BEGIN:VCALENDAR" not in content.upper():
        raise FeedParseError("Feed does not contain a VCALENDAR")

    try:
        cal = Calendar.from_ical(content)
    except (ValueError, IndexError, KeyError) as e:
        raise FeedParseError(f"Malformed calendar feed: {e}") from e

    events: List[ExternalEvent] = []
    seen_uids = set()

    for component in cal.walk("VEVENT"):
        uid = str(component.get("UID", "")).strip()
        if not uid:
            raise FeedParseError("VEVENT without UID")

        # icalendar drops properties it cannot parse and lists them here
        if component.errors:
            broken = ", ".join(str(name or "?") for name, _ in component.errors)
            raise FeedParseError(f"VEVENT {uid} has malformed properties: {broken}")

        start_date = _read_date(component, "DTSTART", uid)
        if start_date is None:
            raise FeedParseError(f"VEVENT {uid} has no readable DTSTART")

        end_date = _read_date(component, "DTEND", uid)
        if end_date is None:
            end_date = start_date + _read_length(component, uid)

        if end_date <= start_date:
            raise FeedParseError(f"VEVENT {uid} ends on or before it starts ({start_date} -> {end_date})")

        if uid in seen_uids:
            logger.debug(f"Duplicate UID {uid} in feed, keeping first occurrence")
            continue
        seen_uids.add(uid)

        summary = str(component.get("SUMMARY", "")).strip() or None

        events.append(ExternalEvent(
            external_id=uid,
            start_date=start_date,
            end_date=end_date,
            status=normalize_status(component.get("STATUS")),
            summary=summary,
            price=_read_price(component),
            last_seen_at=seen_at,
        ))

    return events


class FeedIngestor:
    """
    Fetches and parses calendar feeds.

    A shared httpx.Client may be injected (tests pass one built on
    httpx.MockTransport); otherwise a short-lived client is opened per fetch.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
        user_agent: Optional[str] = None
    ):
        self.client = client
        self.timeout = timeout or settings.feed_timeout_seconds
        self.max_bytes = max_bytes or settings.feed_max_bytes
        self.user_agent = user_agent or settings.feed_user_agent

    def _get_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.user_agent,
            "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.5",
        }

    def fetch_text(self, url: str) -> bytes:
        if self.client is not None:
            return self._download(self.client, url)
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
            return self._download(client, url)

    def _download(self, client: httpx.Client, url: str) -> bytes:
        try:
            with client.stream("GET", url, headers=self._get_headers(), timeout=self.timeout) as response:
                if response.status_code >= 400:
                    raise FeedFetchError(f"Feed returned HTTP {response.status_code}")

                chunks = []
                size = 0
                for chunk in response.iter_bytes():
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise FeedFetchError(f"Feed larger than {self.max_bytes} bytes")
                    chunks.append(chunk)
                return b"".join(chunks)
        except httpx.TimeoutException as e:
            raise FeedFetchError(f"Timed out fetching feed after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise FeedFetchError(f"Failed to fetch feed: {e}") from e

    def fetch(self, connection, seen_at: Optional[datetime] = None) -> List[ExternalEvent]:
        """Fetch and parse one connection's feed"""
        content = self.fetch_text(connection.import_url)
        events = parse_feed(content, seen_at=seen_at)
        logger.info(f"Feed for connection {connection.id}: {len(events)} events ({len(content)} bytes)")
        return events
