import uuid
import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Date, Numeric, Text, ForeignKey, DateTime, Integer, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from ..database import Base


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    EXTERNAL = "external"  # collected by the channel


class ReservationSource(str, enum.Enum):
    DIRECT = "direct"    # booking flow
    CHANNEL = "channel"  # shadow of an external booking


class Reservation(Base):
    """
    A stay occupying [check_in, check_out). Every status except cancelled
    holds calendar space.

    Shadow reservations carry connection_id + external_id and mirror a
    booking made on an external channel.
    """
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="CASCADE"), nullable=False)

    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)  # exclusive
    guests_count = Column(Integer, default=1, nullable=False)

    guest_name = Column(String(200), nullable=True)
    guest_email = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String(20), default=ReservationStatus.CONFIRMED.value, nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)
    source = Column(String(20), default=ReservationSource.DIRECT.value, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=True)

    # Channel shadow tracking
    connection_id = Column(String(36), ForeignKey("channel_connections.id", ondelete="CASCADE"), nullable=True)
    external_id = Column(String(255), nullable=True)
    channel_metadata = Column(JSON, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    unit = relationship("Unit", back_populates="reservations")
    connection = relationship("ChannelConnection", back_populates="reservations")

    __table_args__ = (
        UniqueConstraint("connection_id", "external_id", name="uq_reservation_connection_external"),
        Index("ix_reservation_unit_dates", "unit_id", "check_in", "check_out"),
        Index("ix_reservation_status", "status"),
    )

    @property
    def is_shadow(self) -> bool:
        return self.connection_id is not None

    @property
    def is_active(self) -> bool:
        return self.status != ReservationStatus.CANCELLED.value

    def __repr__(self):
        return f"<Reservation {self.check_in} -> {self.check_out} ({self.status})>"
