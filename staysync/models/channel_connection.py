"""
Channel Connection Models

Models for calendar-feed channel links:
- ChannelConnection: one unit bound to one external platform feed, plus its
  scheduling state (next_sync_at is the queue)
- ExternalEventSnapshot: last-known copy of each feed event, used for diffing
- SyncLog: one row per sync attempt, for operator diagnostics
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Date, Numeric, ForeignKey, DateTime, Integer, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from ..database import Base


class ConnectionStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class Platform(str, enum.Enum):
    AIRBNB_ICAL = "airbnb_ical"
    VRBO_ICAL = "vrbo_ical"
    BOOKING_ICAL = "booking_ical"
    EXPEDIA_ICAL = "expedia_ical"
    GENERIC_ICAL = "generic_ical"


PLATFORM_LABELS = {
    Platform.AIRBNB_ICAL.value: "Airbnb (iCal)",
    Platform.VRBO_ICAL.value: "Vrbo (iCal)",
    Platform.BOOKING_ICAL.value: "Booking.com (iCal)",
    Platform.EXPEDIA_ICAL.value: "Expedia (iCal)",
    Platform.GENERIC_ICAL.value: "Other calendar feed",
}


class SyncType(str, enum.Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class SyncTrigger(str, enum.Enum):
    CRON = "cron"
    USER = "user"
    SYSTEM = "system"


class SyncLogStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"  # feed applied, conflicts raised
    ERROR = "error"


class ChannelConnection(Base):
    """
    Binds a unit to one external calendar feed.

    Status lifecycle:
    - active: picked up by the scheduled tick when next_sync_at <= now
    - error: too many consecutive failures; manual sync only
    - paused: set by the owner, never entered automatically
    """
    __tablename__ = "channel_connections"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="CASCADE"), nullable=False)
    org_id = Column(String(36), nullable=False, index=True)

    platform = Column(String(30), nullable=False)
    import_url = Column(Text, nullable=False)
    sync_frequency_minutes = Column(Integer, default=30, nullable=False)

    status = Column(String(20), default=ConnectionStatus.ACTIVE.value, nullable=False)

    # Scheduling state
    last_sync_at = Column(DateTime, nullable=True)
    next_sync_at = Column(DateTime, nullable=True)
    sync_started_at = Column(DateTime, nullable=True)  # in-progress marker

    # Failure tracking
    error_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    unit = relationship("Unit", back_populates="connections")
    reservations = relationship("Reservation", back_populates="connection", cascade="all, delete")
    snapshots = relationship("ExternalEventSnapshot", back_populates="connection", cascade="all, delete")
    sync_logs = relationship("SyncLog", back_populates="connection", cascade="all, delete")
    conflicts = relationship("Conflict", back_populates="connection", cascade="all, delete")

    __table_args__ = (
        UniqueConstraint("unit_id", "platform", name="uq_connection_unit_platform"),
        Index("ix_connection_due", "status", "next_sync_at"),
    )

    def __repr__(self):
        return f"<ChannelConnection {self.platform} unit={self.unit_id} ({self.status})>"


class ExternalEventSnapshot(Base):
    """
    Latest-known state of one feed event, kept in step with the feed after
    every successful reconciliation (updated in place by external id).
    """
    __tablename__ = "external_event_snapshots"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    connection_id = Column(String(36), ForeignKey("channel_connections.id", ondelete="CASCADE"), nullable=False)
    external_id = Column(String(255), nullable=False)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)  # exclusive, like check_out
    status = Column(String(20), nullable=False)
    summary = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=True)

    last_seen_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    connection = relationship("ChannelConnection", back_populates="snapshots")

    __table_args__ = (
        UniqueConstraint("connection_id", "external_id", name="uq_snapshot_connection_external"),
    )


class SyncLog(Base):
    """One sync attempt of one connection"""
    __tablename__ = "sync_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    connection_id = Column(String(36), ForeignKey("channel_connections.id", ondelete="CASCADE"), nullable=False)

    sync_type = Column(String(20), default=SyncType.SCHEDULED.value, nullable=False)
    triggered_by = Column(String(20), default=SyncTrigger.CRON.value, nullable=False)
    status = Column(String(20), nullable=True)

    items_processed = Column(Integer, default=0)
    items_created = Column(Integer, default=0)
    items_updated = Column(Integer, default=0)
    items_cancelled = Column(Integer, default=0)
    conflicts_detected = Column(Integer, default=0)

    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    connection = relationship("ChannelConnection", back_populates="sync_logs")

    __table_args__ = (
        Index("ix_sync_log_connection_started", "connection_id", "started_at"),
    )
