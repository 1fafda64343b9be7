"""
Conflicts API Router

Queue of conflicts for operator tooling, and the resolve/ignore actions.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.conflict_service import ConflictResolutionService
from ..schemas.channel import ConflictResponse, ConflictResolveRequest, ConflictIgnoreRequest

router = APIRouter(prefix="/api/conflicts", tags=["Conflicts"])


@router.get("", response_model=List[ConflictResponse])
async def list_conflicts(
    unit_id: Optional[str] = Query(None),
    org_id: Optional[str] = Query(None),
    status: Optional[str] = Query("unresolved", description="unresolved, resolved, ignored; empty for all"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    return ConflictResolutionService(db).list_conflicts(
        unit_id=unit_id, org_id=org_id, status=status or None, limit=limit
    )


@router.get("/{conflict_id}", response_model=ConflictResponse)
async def get_conflict(conflict_id: str, db: Session = Depends(get_db)):
    return ConflictResolutionService(db).get(conflict_id)


@router.post("/{conflict_id}/resolve", response_model=ConflictResponse)
async def resolve_conflict(
    conflict_id: str,
    data: ConflictResolveRequest,
    db: Session = Depends(get_db)
):
    return ConflictResolutionService(db).resolve(
        conflict_id, data.action.value, notes=data.notes, resolved_by=data.resolved_by
    )


@router.post("/{conflict_id}/ignore", response_model=ConflictResponse)
async def ignore_conflict(
    conflict_id: str,
    data: Optional[ConflictIgnoreRequest] = None,
    db: Session = Depends(get_db)
):
    data = data or ConflictIgnoreRequest()
    return ConflictResolutionService(db).ignore(conflict_id, notes=data.notes, resolved_by=data.resolved_by)
