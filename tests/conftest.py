"""
Shared fixtures: an in-memory SQLite database per test, row factories and
an iCalendar feed builder.
"""

import sys
import os
from datetime import date, datetime
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from staysync.database import Base
from staysync import models  # noqa: F401
from staysync.models.unit import Unit
from staysync.models.availability_rule import AvailabilityRule
from staysync.models.reservation import Reservation
from staysync.models.channel_connection import ChannelConnection
from staysync.services.feed_ingestor import FeedIngestor

FEED_URL = "https://calendar.example.com/feed.ics"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ==========================================
# Row factories
# ==========================================

@pytest.fixture
def make_unit(db):
    def _make(base_price="100.00", cleaning_fee="0", tourist_tax="0", min_guests=1, max_guests=None,
              org_id="org-1", name="Sea View Loft", currency="EUR"):
        unit = Unit(
            org_id=org_id,
            name=name,
            base_price=Decimal(base_price) if base_price is not None else None,
            cleaning_fee=Decimal(cleaning_fee),
            tourist_tax=Decimal(tourist_tax),
            min_guests=min_guests,
            max_guests=max_guests,
            currency=currency,
        )
        db.add(unit)
        db.commit()
        db.refresh(unit)
        return unit
    return _make


@pytest.fixture
def unit(make_unit):
    return make_unit()


@pytest.fixture
def make_rule(db):
    def _make(unit, kind, start, end, created_at=None, **payload):
        rule = AvailabilityRule(unit_id=unit.id, kind=kind, start_date=start, end_date=end, **payload)
        if created_at is not None:
            rule.created_at = created_at
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule
    return _make


@pytest.fixture
def make_reservation(db):
    def _make(unit, check_in, check_out, status="confirmed", payment_status="pending", connection=None,
              external_id=None, guest_name="Jane Guest"):
        reservation = Reservation(
            unit_id=unit.id,
            check_in=check_in,
            check_out=check_out,
            guests_count=2,
            guest_name=guest_name,
            status=status,
            payment_status=payment_status,
            source="channel" if connection else "direct",
            connection_id=connection.id if connection else None,
            external_id=external_id,
        )
        db.add(reservation)
        db.commit()
        db.refresh(reservation)
        return reservation
    return _make


@pytest.fixture
def make_connection(db):
    def _make(unit, platform="airbnb_ical", status="active", next_sync_at=None, frequency=30,
              error_count=0, import_url=FEED_URL):
        connection = ChannelConnection(
            unit_id=unit.id,
            org_id=unit.org_id,
            platform=platform,
            import_url=import_url,
            sync_frequency_minutes=frequency,
            status=status,
            next_sync_at=next_sync_at,
            error_count=error_count,
        )
        db.add(connection)
        db.commit()
        db.refresh(connection)
        return connection
    return _make


@pytest.fixture
def connection(make_connection, unit):
    return make_connection(unit, next_sync_at=datetime(2025, 1, 1))


# ==========================================
# Feeds
# ==========================================

def build_ics(events) -> str:
    """events: iterable of dicts with uid, start, end and optional status/summary/price"""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Test//Feed//EN"]
    for event in events:
        lines.append("BEGIN:VEVENT")
        lines.append(f"UID:{event['uid']}")
        lines.append(f"DTSTART;VALUE=DATE:{event['start'].strftime('%Y%m%d')}")
        if event.get("end") is not None:
            lines.append(f"DTEND;VALUE=DATE:{event['end'].strftime('%Y%m%d')}")
        if event.get("status"):
            lines.append(f"STATUS:{event['status']}")
        lines.append(f"SUMMARY:{event.get('summary', 'Reserved')}")
        if event.get("price") is not None:
            lines.append(f"X-PRICE:{event['price']}")
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


@pytest.fixture
def ics():
    return build_ics


@pytest.fixture
def feed_server():
    """
    Mutable fake feed host. Set ``body`` (and optionally ``status_code`` or
    ``error``) and pass ``ingestor`` to the orchestrator.
    """
    class FeedServer:
        def __init__(self):
            self.body = build_ics([])
            self.status_code = 200
            self.error = None
            self.requests = []

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if self.error is not None:
                raise self.error
            return httpx.Response(self.status_code, text=self.body,
                                  headers={"Content-Type": "text/calendar"})

        @property
        def ingestor(self) -> FeedIngestor:
            client = httpx.Client(transport=httpx.MockTransport(self.handler))
            return FeedIngestor(client=client, timeout=5, max_bytes=100_000)

    return FeedServer()


@pytest.fixture
def today():
    return date(2025, 1, 1)
