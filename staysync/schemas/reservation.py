from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class ReservationCreate(BaseModel):
    """Direct booking request"""
    unit_id: str
    check_in: date
    check_out: date
    guests_count: int = Field(default=1, ge=1)
    guest_name: Optional[str] = Field(None, max_length=200)
    guest_email: Optional[str] = Field(None, max_length=255)
    status: str = Field(default="confirmed")
    payment_status: str = Field(default="pending")
    notes: Optional[str] = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v not in ("pending", "confirmed"):
            raise ValueError("status must be pending or confirmed")
        return v

    @field_validator('payment_status')
    @classmethod
    def validate_payment_status(cls, v):
        if v not in ("pending", "paid"):
            raise ValueError("payment_status must be pending or paid")
        return v

    @model_validator(mode='after')
    def validate_dates(self):
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self


class ReservationResponse(BaseModel):
    id: str
    unit_id: str
    check_in: date
    check_out: date
    guests_count: int
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    status: str
    payment_status: str
    source: str
    total_price: Optional[Decimal] = None
    connection_id: Optional[str] = None
    external_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
