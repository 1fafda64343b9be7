"""
Availability & Rules API Router

Endpoints for availability verdicts and for owners' dated rules.
"""

from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.availability_service import AvailabilityEvaluator
from ..services.interval_store import IntervalStore
from ..schemas.availability import (
    RuleCreate,
    RuleUpdate,
    RuleResponse,
    AvailabilityResponse,
    BulkBlockRequest,
    BulkBlockResponse
)
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api", tags=["Availability"])


@router.get("/availability/{unit_id}", response_model=AvailabilityResponse)
@limiter.limit(get_rate_limit("availability"))
async def check_availability(
    request: Request,
    unit_id: str,
    check_in: date = Query(..., description="YYYY-MM-DD"),
    check_out: date = Query(..., description="YYYY-MM-DD, exclusive"),
    db: Session = Depends(get_db)
):
    """Can the unit take a stay [check_in, check_out)?"""
    verdict = AvailabilityEvaluator(db).check(unit_id, check_in, check_out)
    return AvailabilityResponse(**verdict.__dict__)


# ==================
# Rules CRUD
# ==================

@router.get("/units/{unit_id}/rules", response_model=List[RuleResponse])
async def list_rules(
    unit_id: str,
    kind: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    store = IntervalStore(db)
    store.get_unit(unit_id)
    return store.list_rules(unit_id, kind=kind)


@router.post("/units/{unit_id}/rules", response_model=RuleResponse, status_code=201)
async def create_rule(
    unit_id: str,
    rule_data: RuleCreate,
    db: Session = Depends(get_db)
):
    return IntervalStore(db).create_rule(
        unit_id=unit_id,
        kind=rule_data.kind.value,
        start_date=rule_data.start_date,
        end_date=rule_data.end_date,
        reason=rule_data.reason,
        min_nights=rule_data.min_nights,
        price_per_night=rule_data.price_per_night,
    )


@router.post("/rules/bulk-block", response_model=BulkBlockResponse, status_code=201)
async def bulk_block_dates(data: BulkBlockRequest, db: Session = Depends(get_db)):
    """Block the same dates on several units; refused if any unit has a reservation there"""
    rules = IntervalStore(db).bulk_block(
        data.unit_ids, data.start_date, data.end_date, reason=data.reason, org_id=data.org_id
    )
    return BulkBlockResponse(count=len(rules), rules=[RuleResponse.model_validate(rule) for rule in rules])


@router.put("/rules/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: str,
    rule_data: RuleUpdate,
    db: Session = Depends(get_db)
):
    return IntervalStore(db).update_rule(rule_id, rule_data.model_dump(exclude_unset=True))


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(rule_id: str, db: Session = Depends(get_db)):
    IntervalStore(db).delete_rule(rule_id)
