"""
Availability Schemas

Pydantic models for rules, availability verdicts and price quotes.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, Field, model_validator

from ..models.availability_rule import RuleKind


class RuleBase(BaseModel):
    """Base schema for an availability rule"""
    kind: RuleKind
    start_date: date
    end_date: date = Field(..., description="Inclusive last day")
    reason: Optional[str] = Field(None, max_length=500, description="blocked rules only")
    min_nights: Optional[int] = Field(None, ge=1, description="min_stay rules only")
    price_per_night: Optional[Decimal] = Field(None, ge=0, description="price_override rules only")

    @model_validator(mode='after')
    def validate_range_and_payload(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        if self.kind == RuleKind.MIN_STAY and self.min_nights is None:
            raise ValueError("min_stay rules need min_nights")
        if self.kind == RuleKind.PRICE_OVERRIDE and self.price_per_night is None:
            raise ValueError("price_override rules need price_per_night")
        return self


class RuleCreate(RuleBase):
    pass


class RuleUpdate(BaseModel):
    """Partial update; kind cannot change"""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = Field(None, max_length=500)
    min_nights: Optional[int] = Field(None, ge=1)
    price_per_night: Optional[Decimal] = Field(None, ge=0)


class BulkBlockRequest(BaseModel):
    """Block the same dates on several units"""
    unit_ids: List[str] = Field(..., min_length=1)
    start_date: date
    end_date: date = Field(..., description="Inclusive last day")
    reason: Optional[str] = Field(None, max_length=500)
    org_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_range(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class RuleResponse(BaseModel):
    id: str
    unit_id: str
    kind: str
    start_date: date
    end_date: date
    reason: Optional[str] = None
    min_nights: Optional[int] = None
    price_per_night: Optional[Decimal] = None
    created_at: datetime

    class Config:
        from_attributes = True


class BulkBlockResponse(BaseModel):
    count: int
    rules: List[RuleResponse]


class AvailabilityResponse(BaseModel):
    """Verdict for a candidate stay"""
    unit_id: str
    check_in: date
    check_out: date
    available: bool
    reason: Optional[str] = None
    blocking_rules: List[Dict[str, Any]] = []
    conflicting_reservation_ids: List[str] = []
    min_nights: Optional[int] = None
    nights: int


class NightlyPriceResponse(BaseModel):
    date: date
    price: Decimal
    source: str
    rule_id: Optional[str] = None


class PriceQuoteResponse(BaseModel):
    """Price breakdown for a stay"""
    unit_id: str
    check_in: date
    check_out: date
    nights: int
    accommodation_total: Decimal
    cleaning_fee: Decimal
    tourist_tax: Decimal
    total: Decimal
    currency: str
    average_per_night: Decimal
    nightly: List[NightlyPriceResponse]
