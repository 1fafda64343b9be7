"""
Channel connection management: link, update, unlink.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Dict
from urllib.parse import urlparse

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import NotFoundError, ValidationError
from ..models.channel_connection import ChannelConnection, SyncLog, ConnectionStatus, Platform, SyncLogStatus
from ..models.conflict import Conflict, ConflictStatus
from ..models.reservation import Reservation
from .interval_store import IntervalStore

logger = logging.getLogger(__name__)

PLATFORMS = {platform.value for platform in Platform}

# Statuses an owner may set; error is reached only through failed syncs
OWNER_STATUSES = (ConnectionStatus.ACTIVE.value, ConnectionStatus.PAUSED.value)


def validate_import_url(url: str) -> str:
    url = (url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme.lower() != "https" or not parsed.netloc:
        raise ValidationError("Import URL must be an https:// URL", field="import_url")
    return url


class ConnectionService:

    def __init__(self, db: Session):
        self.db = db
        self.store = IntervalStore(db)

    def get(self, connection_id: str) -> ChannelConnection:
        connection = self.db.query(ChannelConnection).filter(ChannelConnection.id == connection_id).first()
        if not connection:
            raise NotFoundError("Connection", connection_id)
        return connection

    def list_connections(self, unit_id: Optional[str] = None, org_id: Optional[str] = None) -> List[ChannelConnection]:
        query = self.db.query(ChannelConnection)
        if unit_id:
            query = query.filter(ChannelConnection.unit_id == unit_id)
        if org_id:
            query = query.filter(ChannelConnection.org_id == org_id)
        return query.order_by(ChannelConnection.created_at).all()

    def _validate_frequency(self, minutes: int) -> int:
        if minutes < settings.sync_min_frequency_minutes:
            raise ValidationError(
                f"Sync frequency must be at least {settings.sync_min_frequency_minutes} minutes",
                field="sync_frequency_minutes"
            )
        return minutes

    def create(
        self,
        unit_id: str,
        platform: str,
        import_url: str,
        sync_frequency_minutes: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> ChannelConnection:
        unit = self.store.get_unit(unit_id)

        if platform not in PLATFORMS:
            raise ValidationError(f"Unknown platform '{platform}'", field="platform")
        import_url = validate_import_url(import_url)
        frequency = self._validate_frequency(sync_frequency_minutes or settings.sync_default_frequency_minutes)

        existing = self.db.query(ChannelConnection).filter(
            ChannelConnection.unit_id == unit_id,
            ChannelConnection.platform == platform
        ).first()
        if existing:
            raise ValidationError(f"Unit already has a {platform} connection", field="platform")

        connection = ChannelConnection(
            unit_id=unit_id,
            org_id=unit.org_id,
            platform=platform,
            import_url=import_url,
            sync_frequency_minutes=frequency,
            status=ConnectionStatus.ACTIVE.value,
            error_count=0,
            # Due at the next tick
            next_sync_at=now or datetime.utcnow(),
        )
        self.db.add(connection)
        self.db.commit()
        self.db.refresh(connection)

        logger.info(f"Connection created: {platform} for unit {unit_id} ({connection.id})")
        return connection

    def update(self, connection_id: str, changes: Dict, now: Optional[datetime] = None) -> ChannelConnection:
        connection = self.get(connection_id)
        now = now or datetime.utcnow()

        if changes.get("import_url") is not None:
            connection.import_url = validate_import_url(changes["import_url"])
        if changes.get("sync_frequency_minutes") is not None:
            connection.sync_frequency_minutes = self._validate_frequency(changes["sync_frequency_minutes"])

        status = changes.get("status")
        if status is not None and status != connection.status:
            if status not in OWNER_STATUSES:
                raise ValidationError(f"Status can only be set to {', '.join(OWNER_STATUSES)}", field="status")
            if status == ConnectionStatus.ACTIVE.value:
                # Resume (from paused or error): start fresh and sync at the next tick
                connection.error_count = 0
                connection.last_error = None
                connection.next_sync_at = now
            connection.status = status
            logger.info(f"Connection {connection_id} -> {status}")

        self.db.commit()
        self.db.refresh(connection)
        return connection

    def delete(self, connection_id: str) -> None:
        """Unlink; shadows, snapshots, logs and conflicts of the connection go with it"""
        connection = self.get(connection_id)

        shadow_ids = [
            row.id for row in self.db.query(Reservation.id).filter(Reservation.connection_id == connection_id)
        ]
        if shadow_ids:
            # Other connections' conflicts may point at these shadows
            self.db.query(Conflict).filter(
                Conflict.connection_id != connection_id,
                Conflict.local_reservation_id.in_(shadow_ids)
            ).update({Conflict.local_reservation_id: None}, synchronize_session=False)
            self.db.query(Conflict).filter(
                Conflict.connection_id != connection_id,
                Conflict.remote_reservation_id.in_(shadow_ids)
            ).update({Conflict.remote_reservation_id: None}, synchronize_session=False)

            removed = set(shadow_ids)
            for conflict in self.db.query(Conflict).filter(
                Conflict.connection_id != connection_id,
                Conflict.unit_id == connection.unit_id
            ):
                if removed.intersection(conflict.local_reservation_ids or []):
                    conflict.local_reservation_ids = [
                        rid for rid in conflict.local_reservation_ids if rid not in removed
                    ]

        self.db.delete(connection)
        self.db.commit()
        logger.info(f"Connection deleted: {connection_id} ({len(shadow_ids)} shadows removed)")

    def get_logs(self, connection_id: str, limit: int = 50) -> List[SyncLog]:
        self.get(connection_id)
        return self.db.query(SyncLog).filter(
            SyncLog.connection_id == connection_id
        ).order_by(SyncLog.started_at.desc()).limit(limit).all()


def get_sync_stats(db: Session, org_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """
    Operator dashboard counts: connections by status, open conflicts and
    sync attempts over the last 24 hours.
    """
    now = now or datetime.utcnow()
    since = now - timedelta(hours=24)

    connections = db.query(ChannelConnection.status, func.count(ChannelConnection.id))
    if org_id:
        connections = connections.filter(ChannelConnection.org_id == org_id)
    by_status = dict(connections.group_by(ChannelConnection.status).all())

    conflicts = db.query(func.count(Conflict.id)).filter(Conflict.status == ConflictStatus.UNRESOLVED.value)
    if org_id:
        conflicts = conflicts.filter(Conflict.org_id == org_id)

    syncs = db.query(SyncLog.status, func.count(SyncLog.id)).join(
        ChannelConnection, SyncLog.connection_id == ChannelConnection.id
    ).filter(SyncLog.started_at >= since)
    if org_id:
        syncs = syncs.filter(ChannelConnection.org_id == org_id)
    syncs_by_status = dict(syncs.group_by(SyncLog.status).all())

    return {
        "total_connections": sum(by_status.values()),
        "active_connections": by_status.get(ConnectionStatus.ACTIVE.value, 0),
        "paused_connections": by_status.get(ConnectionStatus.PAUSED.value, 0),
        "error_connections": by_status.get(ConnectionStatus.ERROR.value, 0),
        "unresolved_conflicts": conflicts.scalar() or 0,
        "last_24h_syncs": sum(syncs_by_status.values()),
        "last_24h_failed_syncs": syncs_by_status.get(SyncLogStatus.ERROR.value, 0),
    }
