"""
Pricing API Router
"""

from datetime import date
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.pricing_engine import PricingEngine
from ..schemas.availability import PriceQuoteResponse, NightlyPriceResponse
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/pricing", tags=["Pricing"])


@router.get("/{unit_id}/quote", response_model=PriceQuoteResponse)
@limiter.limit(get_rate_limit("quote"))
async def get_price_quote(
    request: Request,
    unit_id: str,
    check_in: date = Query(..., description="YYYY-MM-DD"),
    check_out: date = Query(..., description="YYYY-MM-DD, exclusive"),
    db: Session = Depends(get_db)
):
    """Price breakdown for a stay. Does not check availability."""
    breakdown = PricingEngine(db).calculate(unit_id, check_in, check_out)

    return PriceQuoteResponse(
        unit_id=breakdown.unit_id,
        check_in=breakdown.check_in,
        check_out=breakdown.check_out,
        nights=breakdown.nights,
        accommodation_total=breakdown.accommodation_total,
        cleaning_fee=breakdown.cleaning_fee,
        tourist_tax=breakdown.tourist_tax,
        total=breakdown.total,
        currency=breakdown.currency,
        average_per_night=breakdown.average_per_night,
        nightly=[
            NightlyPriceResponse(date=n.date, price=n.price, source=n.source, rule_id=n.rule_id)
            for n in breakdown.nightly
        ],
    )
