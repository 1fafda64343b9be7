"""
Calendar Sync Orchestrator

Periodic driver for calendar-feed connections. Each tick:
1. Selects active connections with next_sync_at <= now, oldest first,
   bounded by SYNC_BATCH_SIZE (skip_locked on PostgreSQL)
2. Claims them by pushing next_sync_at forward and stamping
   sync_started_at, so an overlapping tick or a manual sync skips them
   until the run finishes or the marker goes stale
3. Runs fetch + reconcile per connection on a bounded thread pool,
   one database session per connection

Connection state machine:
- success: error_count reset, status back to active
- failure: error_count + 1, last_error recorded, next_sync_at still advanced
- error_count >= SYNC_ERROR_THRESHOLD: active -> error (manual sync only)
- paused is never entered or left here
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Callable

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..exceptions import FeedError, NotFoundError, ConnectionNotSyncableError
from ..models.channel_connection import (
    ChannelConnection,
    SyncLog,
    ConnectionStatus,
    SyncType,
    SyncTrigger,
    SyncLogStatus
)
from ..utils.db_helpers import get_pending_with_skip_locked
from ..utils.logging_config import get_logger
from .feed_ingestor import FeedIngestor
from .reconciler import Reconciler

logger = get_logger(__name__)


@dataclass
class SyncOutcome:
    """Result of one connection's sync attempt"""
    connection_id: str
    success: bool
    status: str
    error: Optional[str] = None
    error_count: int = 0
    sync_log_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "success": self.success,
            "status": self.status,
            "error": self.error,
            "error_count": self.error_count,
            "sync_log_id": self.sync_log_id,
            "result": self.result,
        }


@dataclass
class TickResult:
    started_at: datetime
    selected: int = 0
    succeeded: int = 0
    failed: int = 0
    outcomes: List[SyncOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "selected": self.selected,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class SyncOrchestrator:

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        ingestor: Optional[FeedIngestor] = None,
        batch_size: Optional[int] = None,
        max_workers: Optional[int] = None,
        error_threshold: Optional[int] = None,
        stale_after_minutes: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.ingestor = ingestor or FeedIngestor()
        self.batch_size = batch_size or settings.sync_batch_size
        self.max_workers = max_workers or settings.sync_max_workers
        self.error_threshold = error_threshold or settings.sync_error_threshold
        self.stale_after = timedelta(minutes=stale_after_minutes or settings.sync_stale_after_minutes)

    # ==========================================
    # Scheduled tick
    # ==========================================

    def get_due_connections(self, db: Session, now: datetime) -> List[ChannelConnection]:
        return get_pending_with_skip_locked(
            db,
            ChannelConnection,
            and_(
                ChannelConnection.status == ConnectionStatus.ACTIVE.value,
                ChannelConnection.next_sync_at <= now,
                or_(
                    ChannelConnection.sync_started_at.is_(None),
                    ChannelConnection.sync_started_at <= now - self.stale_after
                )
            ),
            order_by=ChannelConnection.next_sync_at,
            limit=self.batch_size
        )

    def claim_due_connections(self, now: Optional[datetime] = None) -> List[str]:
        """Select and claim due connections in one short transaction"""
        now = now or datetime.utcnow()
        db = self.session_factory()
        try:
            due = self.get_due_connections(db, now)
            claimed = []
            for connection in due:
                connection.sync_started_at = now
                connection.next_sync_at = now + timedelta(minutes=connection.sync_frequency_minutes)
                claimed.append(connection.id)
            db.commit()
            return claimed
        finally:
            db.close()

    def run_tick(self, now: Optional[datetime] = None) -> TickResult:
        now = now or datetime.utcnow()
        tick = TickResult(started_at=now)

        connection_ids = self.claim_due_connections(now)
        tick.selected = len(connection_ids)
        if not connection_ids:
            logger.info("Sync tick: no connections due")
            return tick

        logger.info(f"Sync tick: {len(connection_ids)} connections due")

        if self.max_workers <= 1 or len(connection_ids) == 1:
            for connection_id in connection_ids:
                tick.outcomes.append(self._run_isolated(connection_id, now))
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(self._run_isolated, connection_id, now): connection_id
                    for connection_id in connection_ids
                }
                for future in as_completed(futures):
                    tick.outcomes.append(future.result())

        tick.succeeded = sum(1 for o in tick.outcomes if o.success)
        tick.failed = tick.selected - tick.succeeded
        logger.info(f"Sync tick finished: {tick.succeeded} succeeded, {tick.failed} failed")
        return tick

    def _run_isolated(self, connection_id: str, now: datetime) -> SyncOutcome:
        """One session per connection; nothing raised here reaches the other connections"""
        db = self.session_factory()
        try:
            return self.sync_connection(
                db, connection_id,
                sync_type=SyncType.SCHEDULED.value,
                triggered_by=SyncTrigger.CRON.value,
                now=now
            )
        except (NotFoundError, ConnectionNotSyncableError) as e:
            # Paused or deleted between claim and run
            logger.warning(f"Skipping connection {connection_id}: {e.detail}")
            return SyncOutcome(connection_id=connection_id, success=False, status="skipped", error=e.detail)
        except Exception as e:
            logger.exception(f"Unhandled error syncing connection {connection_id}: {e}")
            return SyncOutcome(connection_id=connection_id, success=False, status="unknown", error=str(e))
        finally:
            db.close()

    # ==========================================
    # Single connection
    # ==========================================

    def sync_connection(
        self,
        db: Session,
        connection_id: str,
        sync_type: str = SyncType.MANUAL.value,
        triggered_by: str = SyncTrigger.USER.value,
        now: Optional[datetime] = None
    ) -> SyncOutcome:
        now = now or datetime.utcnow()

        connection = db.query(ChannelConnection).filter(ChannelConnection.id == connection_id).first()
        if not connection:
            raise NotFoundError("Connection", connection_id)

        if connection.status == ConnectionStatus.PAUSED.value:
            raise ConnectionNotSyncableError("Connection is paused; resume it before syncing")
        if sync_type == SyncType.SCHEDULED.value and connection.status != ConnectionStatus.ACTIVE.value:
            raise ConnectionNotSyncableError(f"Connection is {connection.status}, not scheduled")
        if sync_type != SyncType.SCHEDULED.value and self.is_in_progress(connection, now):
            raise ConnectionNotSyncableError("A sync of this connection is already in progress")

        sync_log = SyncLog(
            connection_id=connection.id,
            sync_type=sync_type,
            triggered_by=triggered_by,
            started_at=now,
        )
        db.add(sync_log)
        connection.sync_started_at = now
        db.commit()

        logger.sync_started(connection.id, connection.platform, triggered_by)
        started = time.monotonic()

        try:
            events = self.ingestor.fetch(connection, seen_at=now)
            result = Reconciler(db, today=now.date()).reconcile(
                connection, events, seen_at=now, commit=False
            )
        except FeedError as e:
            db.rollback()
            return self._record_failure(db, connection_id, sync_log.id, e.detail, now, started)
        except Exception as e:
            db.rollback()
            logger.exception(f"Reconciliation failed for connection {connection_id}")
            return self._record_failure(db, connection_id, sync_log.id, f"Internal error: {e}", now, started)

        duration_ms = int((time.monotonic() - started) * 1000)

        connection.status = ConnectionStatus.ACTIVE.value
        connection.error_count = 0
        connection.last_error = None
        connection.last_sync_at = now
        connection.next_sync_at = now + timedelta(minutes=connection.sync_frequency_minutes)
        connection.sync_started_at = None

        sync_log.status = SyncLogStatus.PARTIAL_SUCCESS.value if result.conflicts else SyncLogStatus.SUCCESS.value
        sync_log.items_processed = len(events)
        sync_log.items_created = len(result.created)
        sync_log.items_updated = len(result.updated)
        sync_log.items_cancelled = len(result.cancelled)
        sync_log.conflicts_detected = len(result.conflicts)
        sync_log.completed_at = datetime.utcnow()
        sync_log.duration_ms = duration_ms
        db.commit()

        logger.sync_finished(
            connection_id, len(result.created), len(result.updated),
            len(result.cancelled), len(result.conflicts), duration_ms
        )
        return SyncOutcome(
            connection_id=connection_id,
            success=True,
            status=connection.status,
            error_count=0,
            sync_log_id=sync_log.id,
            result=result.to_dict(),
        )

    def is_in_progress(self, connection: ChannelConnection, now: datetime) -> bool:
        started = connection.sync_started_at
        return started is not None and started > now - self.stale_after

    def _record_failure(
        self,
        db: Session,
        connection_id: str,
        sync_log_id: str,
        message: str,
        now: datetime,
        started: float
    ) -> SyncOutcome:
        connection = db.query(ChannelConnection).filter(ChannelConnection.id == connection_id).first()

        connection.error_count = (connection.error_count or 0) + 1
        connection.last_error = message[:1000]
        connection.next_sync_at = now + timedelta(minutes=connection.sync_frequency_minutes)
        connection.sync_started_at = None
        if (
            connection.status == ConnectionStatus.ACTIVE.value
            and connection.error_count >= self.error_threshold
        ):
            connection.status = ConnectionStatus.ERROR.value

        sync_log = db.query(SyncLog).filter(SyncLog.id == sync_log_id).first()
        if sync_log:
            sync_log.status = SyncLogStatus.ERROR.value
            sync_log.error_message = message[:1000]
            sync_log.completed_at = datetime.utcnow()
            sync_log.duration_ms = int((time.monotonic() - started) * 1000)
        db.commit()

        logger.sync_failed(connection_id, message, connection.error_count, connection.status)
        return SyncOutcome(
            connection_id=connection_id,
            success=False,
            status=connection.status,
            error=message,
            error_count=connection.error_count,
            sync_log_id=sync_log_id,
        )
