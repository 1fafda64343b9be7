"""
Channel Schemas

Pydantic models for connections, sync runs and conflicts.
"""

from datetime import date, datetime
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, Field, field_validator

from ..models.channel_connection import Platform
from ..models.conflict import ResolutionAction


# ==================
# Connections
# ==================

class ConnectionCreate(BaseModel):
    unit_id: str
    platform: Platform
    import_url: str = Field(..., max_length=2000)
    sync_frequency_minutes: Optional[int] = Field(None, ge=1)

    @field_validator('import_url')
    @classmethod
    def validate_https(cls, v):
        if not v.strip().lower().startswith("https://"):
            raise ValueError("import_url must use https://")
        return v.strip()


class ConnectionUpdate(BaseModel):
    import_url: Optional[str] = Field(None, max_length=2000)
    sync_frequency_minutes: Optional[int] = Field(None, ge=1)
    status: Optional[str] = Field(None, description="active (resume) or paused")


class ConnectionResponse(BaseModel):
    id: str
    unit_id: str
    org_id: str
    platform: str
    import_url: str
    sync_frequency_minutes: int
    status: str
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    error_count: int
    last_error: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class SyncStatsResponse(BaseModel):
    total_connections: int
    active_connections: int
    paused_connections: int
    error_connections: int
    unresolved_conflicts: int
    last_24h_syncs: int
    last_24h_failed_syncs: int


class PlatformResponse(BaseModel):
    value: str
    label: str


class SyncLogResponse(BaseModel):
    id: str
    connection_id: str
    sync_type: str
    triggered_by: str
    status: Optional[str] = None
    items_processed: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_cancelled: int = 0
    conflicts_detected: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    class Config:
        from_attributes = True


# ==================
# Sync runs
# ==================

class SyncOutcomeResponse(BaseModel):
    connection_id: str
    success: bool
    status: str
    error: Optional[str] = None
    error_count: int = 0
    sync_log_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


class SyncTickResponse(BaseModel):
    started_at: datetime
    selected: int
    succeeded: int
    failed: int
    outcomes: List[SyncOutcomeResponse]


# ==================
# Conflicts
# ==================

class ConflictResponse(BaseModel):
    id: str
    unit_id: str
    org_id: str
    connection_id: str
    conflict_type: str
    severity: str
    status: str
    local_reservation_id: Optional[str] = None
    local_reservation_ids: Optional[List[str]] = None
    remote_reservation_id: Optional[str] = None
    remote_external_id: str
    remote_check_in: date
    remote_check_out: date
    conflict_data: Optional[Dict[str, Any]] = None
    resolution_action: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_by: Optional[str] = None
    detected_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ConflictResolveRequest(BaseModel):
    action: ResolutionAction
    notes: Optional[str] = Field(None, max_length=2000)
    resolved_by: Optional[str] = Field(None, max_length=100)


class ConflictIgnoreRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)
    resolved_by: Optional[str] = Field(None, max_length=100)
