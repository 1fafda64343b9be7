"""
Booking Conflict Model

Raised by the reconciler when an external event and local state disagree
about the same dates. Closed only through the conflict resolution service;
resolved and ignored are terminal.
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Text, Date, ForeignKey, DateTime, JSON, Index
from sqlalchemy.orm import relationship
from ..database import Base


class ConflictType(str, enum.Enum):
    DOUBLE_BOOKING = "double_booking"
    DATE_OVERLAP = "date_overlap"
    CANCELLATION_SYNC = "cancellation_sync"
    PRICE_MISMATCH = "price_mismatch"


class ConflictSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConflictStatus(str, enum.Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    IGNORED = "ignored"


class ResolutionAction(str, enum.Enum):
    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"
    MANUAL_MERGE = "manual_merge"
    CANCELLED_BOTH = "cancelled_both"


class Conflict(Base):
    __tablename__ = "booking_conflicts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="CASCADE"), nullable=False)
    org_id = Column(String(36), nullable=False, index=True)
    connection_id = Column(String(36), ForeignKey("channel_connections.id", ondelete="CASCADE"), nullable=False)

    conflict_type = Column(String(30), nullable=False)
    severity = Column(String(20), default=ConflictSeverity.MEDIUM.value, nullable=False)
    status = Column(String(20), default=ConflictStatus.UNRESOLVED.value, nullable=False)

    # Local side: every reservation the external event collided with.
    # local_reservation_id is the earliest of them, kept for joins and display.
    local_reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True)
    local_reservation_ids = Column(JSON, default=list, nullable=True)

    # Remote side: the feed event, and its shadow if one exists
    remote_reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="SET NULL"), nullable=True)
    remote_external_id = Column(String(255), nullable=False)
    remote_check_in = Column(Date, nullable=False)
    remote_check_out = Column(Date, nullable=False)

    # Both sides as seen at detection time; diagnostic only
    conflict_data = Column(JSON, nullable=True)

    # Resolution
    resolution_action = Column(String(30), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    resolved_by = Column(String(100), nullable=True)

    detected_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    resolved_at = Column(DateTime, nullable=True)

    # Relationships
    connection = relationship("ChannelConnection", back_populates="conflicts")
    local_reservation = relationship("Reservation", foreign_keys=[local_reservation_id])
    remote_reservation = relationship("Reservation", foreign_keys=[remote_reservation_id])

    __table_args__ = (
        Index("ix_conflict_unit_status", "unit_id", "status"),
        Index("ix_conflict_remote", "connection_id", "remote_external_id"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == ConflictStatus.UNRESOLVED.value

    @property
    def local_ids(self) -> list:
        if self.local_reservation_ids:
            return list(self.local_reservation_ids)
        return [self.local_reservation_id] if self.local_reservation_id else []

    def __repr__(self):
        return f"<Conflict {self.conflict_type} {self.remote_external_id} ({self.status})>"
