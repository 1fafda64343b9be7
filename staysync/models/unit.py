import uuid
from datetime import datetime
from sqlalchemy import Column, String, Numeric, DateTime, Integer, Boolean
from sqlalchemy.orm import relationship
from ..database import Base


class Unit(Base):
    """
    A rentable unit. Ownership and the rest of the listing live in the
    surrounding product; the engine only needs the price/fee configuration
    and guest bounds.
    """
    __tablename__ = "units"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = Column(String(36), nullable=False, index=True)
    name = Column(String(200), nullable=False)

    # Pricing. base_price may be empty when every night is priced by an override
    base_price = Column(Numeric(10, 2), nullable=True)
    cleaning_fee = Column(Numeric(10, 2), default=0, nullable=False)
    tourist_tax = Column(Numeric(10, 2), default=0, nullable=False)  # per night
    currency = Column(String(3), default="USD", nullable=False)

    min_guests = Column(Integer, default=1, nullable=False)
    max_guests = Column(Integer, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    rules = relationship("AvailabilityRule", back_populates="unit", cascade="all, delete")
    reservations = relationship("Reservation", back_populates="unit", cascade="all, delete")
    connections = relationship("ChannelConnection", back_populates="unit", cascade="all, delete")

    def __repr__(self):
        return f"<Unit {self.name}>"
