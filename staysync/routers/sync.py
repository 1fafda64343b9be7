"""
Sync Trigger API Router

Both endpoints take ``Authorization: Bearer <SYNC_SECRET>``. The tick is
meant for an external scheduler; the per-connection trigger for operators.

Handlers are plain ``def``: feed fetching blocks, so they run in the
threadpool.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.channel_connection import SyncType, SyncTrigger
from ..services.sync_orchestrator import SyncOrchestrator
from ..schemas.channel import SyncOutcomeResponse, SyncTickResponse
from ..utils.security import require_sync_secret

router = APIRouter(prefix="/api/sync", tags=["Sync"], dependencies=[Depends(require_sync_secret)])


def get_orchestrator() -> SyncOrchestrator:
    return SyncOrchestrator()


@router.post("/run", response_model=SyncTickResponse)
def run_sync_tick(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Sync every active connection that is due"""
    return orchestrator.run_tick().to_dict()


@router.post("/connections/{connection_id}", response_model=SyncOutcomeResponse)
def sync_connection_now(
    connection_id: str,
    db: Session = Depends(get_db),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Manual sync; allowed for active and error connections"""
    outcome = orchestrator.sync_connection(
        db, connection_id,
        sync_type=SyncType.MANUAL.value,
        triggered_by=SyncTrigger.USER.value
    )
    return outcome.to_dict()
