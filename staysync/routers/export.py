"""
Calendar Export Router

Read-only .ics feed of a unit's occupied dates.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.ical_export import build_unit_calendar
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/units", tags=["Export"])


@router.get("/{unit_id}/calendar.ics")
@limiter.limit(get_rate_limit("export"))
async def export_unit_calendar(request: Request, unit_id: str, db: Session = Depends(get_db)):
    content = build_unit_calendar(db, unit_id)
    return Response(
        content=content,
        media_type="text/calendar; charset=utf-8",
        headers={
            "Content-Disposition": f'inline; filename="{unit_id}.ics"',
            "Cache-Control": "no-cache, max-age=0",
        }
    )
