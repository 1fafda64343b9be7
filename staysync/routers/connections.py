"""
Channel Connections API Router

Link, update and unlink calendar feeds; read per-connection sync logs.
"""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.channel_connection import PLATFORM_LABELS
from ..services.connection_service import ConnectionService, get_sync_stats
from ..schemas.channel import (
    ConnectionCreate,
    ConnectionUpdate,
    ConnectionResponse,
    PlatformResponse,
    SyncLogResponse,
    SyncStatsResponse
)

router = APIRouter(prefix="/api/connections", tags=["Connections"])


@router.get("/platforms", response_model=List[PlatformResponse])
async def list_platforms():
    return [PlatformResponse(value=value, label=label) for value, label in PLATFORM_LABELS.items()]


@router.get("/stats", response_model=SyncStatsResponse)
async def get_stats(
    org_id: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """
    Sync dashboard:
    - connections by status
    - unresolved conflicts
    - sync attempts (and failures) in the last 24 hours
    """
    return SyncStatsResponse(**get_sync_stats(db, org_id=org_id))


@router.get("", response_model=List[ConnectionResponse])
async def list_connections(
    unit_id: Optional[str] = Query(None),
    org_id: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    return ConnectionService(db).list_connections(unit_id=unit_id, org_id=org_id)


@router.post("", response_model=ConnectionResponse, status_code=201)
async def create_connection(data: ConnectionCreate, db: Session = Depends(get_db)):
    return ConnectionService(db).create(
        unit_id=data.unit_id,
        platform=data.platform.value,
        import_url=data.import_url,
        sync_frequency_minutes=data.sync_frequency_minutes,
    )


@router.get("/{connection_id}", response_model=ConnectionResponse)
async def get_connection(connection_id: str, db: Session = Depends(get_db)):
    return ConnectionService(db).get(connection_id)


@router.patch("/{connection_id}", response_model=ConnectionResponse)
async def update_connection(
    connection_id: str,
    data: ConnectionUpdate,
    db: Session = Depends(get_db)
):
    return ConnectionService(db).update(connection_id, data.model_dump(exclude_unset=True))


@router.delete("/{connection_id}", status_code=204)
async def delete_connection(connection_id: str, db: Session = Depends(get_db)):
    ConnectionService(db).delete(connection_id)


@router.get("/{connection_id}/logs", response_model=List[SyncLogResponse])
async def get_sync_logs(
    connection_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    return ConnectionService(db).get_logs(connection_id, limit=limit)
