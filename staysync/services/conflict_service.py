"""
Conflict Resolution Service

Closes conflicts raised by the reconciler. Actions:
- keep_local: cancel the external-derived shadow, local booking untouched
- keep_remote: cancel every colliding local booking, mirror the external
  event as a shadow (re-checked against current state first)
- manual_merge: record the outcome only
- cancelled_both: cancel the shadow and every colliding local booking

price_mismatch conflicts are advisory; every action only records the outcome.
resolved and ignored are terminal.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from ..exceptions import NotFoundError, ValidationError, ConflictStateError, ResolutionRejectedError
from ..models.channel_connection import ChannelConnection, ExternalEventSnapshot
from ..models.conflict import Conflict, ConflictType, ConflictStatus, ResolutionAction
from ..models.reservation import Reservation, ReservationStatus, PaymentStatus, ReservationSource
from ..utils.logging_config import get_logger
from .feed_ingestor import EVENT_CANCELLED, EVENT_TENTATIVE
from .interval_store import IntervalStore

logger = get_logger(__name__)

RESOLUTION_ACTIONS = {action.value for action in ResolutionAction}


class ConflictResolutionService:

    def __init__(self, db: Session):
        self.db = db
        self.store = IntervalStore(db)

    def get(self, conflict_id: str) -> Conflict:
        conflict = self.db.query(Conflict).filter(Conflict.id == conflict_id).first()
        if not conflict:
            raise NotFoundError("Conflict", conflict_id)
        return conflict

    def list_conflicts(
        self,
        unit_id: Optional[str] = None,
        org_id: Optional[str] = None,
        status: Optional[str] = ConflictStatus.UNRESOLVED.value,
        limit: int = 100
    ) -> List[Conflict]:
        query = self.db.query(Conflict)
        if unit_id:
            query = query.filter(Conflict.unit_id == unit_id)
        if org_id:
            query = query.filter(Conflict.org_id == org_id)
        if status:
            query = query.filter(Conflict.status == status)
        return query.order_by(Conflict.detected_at.desc()).limit(limit).all()

    def resolve(
        self,
        conflict_id: str,
        action: str,
        notes: Optional[str] = None,
        resolved_by: Optional[str] = None
    ) -> Conflict:
        if action not in RESOLUTION_ACTIONS:
            raise ValidationError(f"Unknown resolution action '{action}'", field="action")

        conflict = self._get_open(conflict_id)
        self.store.lock_unit(conflict.unit_id)

        if conflict.conflict_type != ConflictType.PRICE_MISMATCH.value:
            if action == ResolutionAction.KEEP_LOCAL.value:
                self._cancel(conflict.remote_reservation)
            elif action == ResolutionAction.KEEP_REMOTE.value:
                self._keep_remote(conflict)
            elif action == ResolutionAction.CANCELLED_BOTH.value:
                for reservation in self._local_side(conflict):
                    self._cancel(reservation)
                self._cancel(conflict.remote_reservation)

        conflict.status = ConflictStatus.RESOLVED.value
        conflict.resolution_action = action
        conflict.resolution_notes = notes
        conflict.resolved_by = resolved_by
        conflict.resolved_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(conflict)

        logger.conflict_closed(conflict.id, conflict.status, action)
        return conflict

    def ignore(
        self,
        conflict_id: str,
        notes: Optional[str] = None,
        resolved_by: Optional[str] = None
    ) -> Conflict:
        conflict = self._get_open(conflict_id)

        conflict.status = ConflictStatus.IGNORED.value
        conflict.resolution_notes = notes
        conflict.resolved_by = resolved_by
        conflict.resolved_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(conflict)

        logger.conflict_closed(conflict.id, conflict.status)
        return conflict

    # ==========================================
    # Internals
    # ==========================================

    def _get_open(self, conflict_id: str) -> Conflict:
        conflict = self.get(conflict_id)
        if not conflict.is_open:
            raise ConflictStateError(f"Conflict is already {conflict.status}")
        return conflict

    def _local_side(self, conflict: Conflict) -> List[Reservation]:
        """Every local reservation the conflict was raised against"""
        ids = conflict.local_ids
        if not ids:
            return []
        return self.db.query(Reservation).filter(Reservation.id.in_(ids)).order_by(Reservation.check_in).all()

    def _cancel(self, reservation: Optional[Reservation]) -> None:
        if reservation is not None and reservation.is_active:
            reservation.status = ReservationStatus.CANCELLED.value
            reservation.updated_at = datetime.utcnow()

    def _keep_remote(self, conflict: Conflict) -> None:
        """
        The external side wins. For cancellation_sync that means accepting
        the cancellation; otherwise the event is mirrored as a shadow, which
        must not collide with anything that appeared since detection.
        """
        local_side = self._local_side(conflict)
        if conflict.conflict_type == ConflictType.CANCELLATION_SYNC.value:
            for reservation in local_side:
                self._cancel(reservation)
            return

        snapshot = self.db.query(ExternalEventSnapshot).filter(
            ExternalEventSnapshot.connection_id == conflict.connection_id,
            ExternalEventSnapshot.external_id == conflict.remote_external_id
        ).first()
        if snapshot is None or snapshot.status == EVENT_CANCELLED:
            raise ResolutionRejectedError("The external booking is no longer in the feed")

        shadow = self.db.query(Reservation).filter(
            Reservation.connection_id == conflict.connection_id,
            Reservation.external_id == conflict.remote_external_id
        ).first()

        exclude = [reservation.id for reservation in local_side]
        if shadow is not None:
            exclude.append(shadow.id)
        collisions = [
            r for r in self.store.active_reservations_intersecting(
                conflict.unit_id, snapshot.start_date, snapshot.end_date, exclude_ids=exclude
            )
            if r.connection_id != conflict.connection_id
        ]
        if collisions:
            raise ResolutionRejectedError(
                f"Keeping the external booking would now overlap reservation {collisions[0].id}"
            )

        for reservation in local_side:
            self._cancel(reservation)

        connection = self.db.query(ChannelConnection).filter(
            ChannelConnection.id == conflict.connection_id
        ).first()
        if shadow is None:
            shadow = Reservation(
                unit_id=conflict.unit_id,
                source=ReservationSource.CHANNEL.value,
                payment_status=PaymentStatus.EXTERNAL.value,
                guests_count=1,
                connection_id=conflict.connection_id,
                external_id=conflict.remote_external_id,
                guest_name=snapshot.summary,
            )
            self.db.add(shadow)

        shadow.check_in = snapshot.start_date
        shadow.check_out = snapshot.end_date
        shadow.status = (
            ReservationStatus.PENDING.value if snapshot.status == EVENT_TENTATIVE
            else ReservationStatus.CONFIRMED.value
        )
        if snapshot.price is not None:
            shadow.total_price = snapshot.price
        shadow.channel_metadata = {"summary": snapshot.summary, "feed_status": snapshot.status}
        shadow.last_synced_at = datetime.utcnow()
        self.db.flush()

        conflict.remote_reservation_id = shadow.id
        logger.reservation_created(
            shadow.id, conflict.unit_id, shadow.check_in, shadow.check_out,
            connection.platform if connection else "channel"
        )


def get_conflict_service(db: Session) -> ConflictResolutionService:
    return ConflictResolutionService(db)
