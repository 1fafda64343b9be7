"""
Reconciler

Applies a freshly ingested feed to local state for one connection.

The diff is over external ids:
- new event holding dates       -> shadow reservation, or double_booking
- known event with new dates    -> move the shadow, or date_overlap
- event gone or cancelled       -> cancel the shadow, or cancellation_sync
                                   when a resolved conflict made it authoritative
- event price != computed price -> price_mismatch (advisory)

Reconciliation is idempotent. Running it again with the same events and
no local changes creates nothing, moves nothing and raises nothing:
conflicts are de-duplicated on (connection, external id, type, remote
dates), and a closed conflict is never reopened.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Dict, Iterable, Any

from sqlalchemy.orm import Session

from ..exceptions import PricingError
from ..models.channel_connection import ChannelConnection, ExternalEventSnapshot
from ..models.conflict import Conflict, ConflictType, ConflictSeverity, ConflictStatus, ResolutionAction
from ..models.reservation import Reservation, ReservationStatus, PaymentStatus, ReservationSource
from ..utils.logging_config import get_logger
from .feed_ingestor import ExternalEvent, EVENT_TENTATIVE
from .interval_store import IntervalStore
from .pricing_engine import PricingEngine

logger = get_logger(__name__)

# Conflicts that stand in for a shadow while open, or replace it once closed
BLOCKING_CONFLICT_TYPES = (ConflictType.DOUBLE_BOOKING.value, ConflictType.DATE_OVERLAP.value)

GUEST_HELD_STATUSES = (ReservationStatus.CONFIRMED.value, ReservationStatus.CHECKED_IN.value)


@dataclass
class ReconcileResult:
    connection_id: str
    created: List[str] = field(default_factory=list)     # reservation ids
    updated: List[str] = field(default_factory=list)     # reservation ids
    cancelled: List[str] = field(default_factory=list)   # reservation ids
    skipped: List[str] = field(default_factory=list)     # external ids
    conflicts: List[str] = field(default_factory=list)   # conflict ids raised this run

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.cancelled or self.conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "created": len(self.created),
            "updated": len(self.updated),
            "cancelled": len(self.cancelled),
            "skipped": len(self.skipped),
            "conflicts": len(self.conflicts),
        }


def shadow_status_for(event: ExternalEvent) -> str:
    """Tentative external bookings still hold their dates, as pending"""
    if event.status == EVENT_TENTATIVE:
        return ReservationStatus.PENDING.value
    return ReservationStatus.CONFIRMED.value


def severity_for(local_side: Iterable[Reservation]) -> str:
    """high when a guest-paid, confirmed direct booking is at stake"""
    for reservation in local_side:
        if (
            not reservation.is_shadow
            and reservation.status in GUEST_HELD_STATUSES
            and reservation.payment_status == PaymentStatus.PAID.value
        ):
            return ConflictSeverity.HIGH.value
    return ConflictSeverity.MEDIUM.value


def describe_reservation(reservation: Reservation) -> Dict[str, Any]:
    return {
        "id": reservation.id,
        "check_in": reservation.check_in.isoformat(),
        "check_out": reservation.check_out.isoformat(),
        "status": reservation.status,
        "payment_status": reservation.payment_status,
        "source": reservation.source,
        "guest_name": reservation.guest_name,
        "total_price": str(reservation.total_price) if reservation.total_price is not None else None,
        "connection_id": reservation.connection_id,
        "external_id": reservation.external_id,
    }


class Reconciler:
    """
    Diffs one connection's feed against its snapshots and shadows.

    The unit row is locked for the whole run, the same lock the booking
    commit path takes, so a shadow and a direct booking can't land on the
    same dates concurrently.
    """

    def __init__(self, db: Session, today: Optional[date] = None, pricing: Optional[PricingEngine] = None):
        self.db = db
        self.store = IntervalStore(db)
        self.pricing = pricing or PricingEngine(db)
        self.today = today or date.today()

    def reconcile(
        self,
        connection: ChannelConnection,
        fresh_events: List[ExternalEvent],
        previous: Optional[Dict[str, ExternalEventSnapshot]] = None,
        seen_at: Optional[datetime] = None,
        commit: bool = True
    ) -> ReconcileResult:
        seen_at = seen_at or datetime.utcnow()
        result = ReconcileResult(connection_id=connection.id)

        self.store.lock_unit(connection.unit_id)

        if previous is None:
            previous = self.store.snapshots_for_connection(connection.id)
        shadows = self.store.shadows_for_connection(connection.id)

        fresh: Dict[str, ExternalEvent] = {}
        for event in fresh_events:
            fresh.setdefault(event.external_id, event)

        # Events present in the feed, in feed order
        for event in fresh.values():
            if event.end_date < self.today:
                result.skipped.append(event.external_id)
                continue

            shadow = shadows.get(event.external_id)

            if not event.holds_dates:
                self._retire(connection, event.external_id, shadow, result, seen_at)
                continue

            if shadow is None or not shadow.is_active:
                self._handle_new(connection, event, shadow, result, seen_at)
            elif shadow.check_in != event.start_date or shadow.check_out != event.end_date:
                self._handle_moved(connection, event, shadow, result, seen_at)
            elif shadow.status != shadow_status_for(event) and shadow.status in (
                ReservationStatus.PENDING.value, ReservationStatus.CONFIRMED.value
            ):
                shadow.status = shadow_status_for(event)
                shadow.last_synced_at = seen_at
                self.db.flush()
                result.updated.append(shadow.id)

            self._check_price(connection, event, result)

        # Absent events: anything we knew about (snapshot or live shadow) that the feed dropped
        known_ids = list(previous.keys()) + [
            external_id for external_id, shadow in shadows.items() if shadow.is_active
        ]
        for external_id in dict.fromkeys(known_ids):
            if external_id in fresh:
                continue
            shadow = shadows.get(external_id)
            if shadow is not None and shadow.check_out < self.today:
                # Past stays age out of feeds; keep them
                continue
            self._retire(connection, external_id, shadow, result, seen_at)

        self.store.replace_snapshots(connection.id, fresh.values(), seen_at)

        if commit:
            self.db.commit()

        logger.info(
            f"Reconciled connection {connection.id}: {len(result.created)} created, "
            f"{len(result.updated)} updated, {len(result.cancelled)} cancelled, "
            f"{len(result.skipped)} skipped, {len(result.conflicts)} conflicts"
        )
        return result

    # ==========================================
    # Diff branches
    # ==========================================

    def _handle_new(
        self,
        connection: ChannelConnection,
        event: ExternalEvent,
        cancelled_shadow: Optional[Reservation],
        result: ReconcileResult,
        seen_at: datetime
    ) -> None:
        """New event, or a cancelled shadow whose event came back"""
        if self._has_blocking_conflict(connection.id, event.external_id, event.start_date, event.end_date):
            result.skipped.append(event.external_id)
            return

        exclude = [cancelled_shadow.id] if cancelled_shadow else []
        collisions = self._collisions(connection, event, exclude)
        if collisions:
            self._raise_conflict(
                connection, ConflictType.DOUBLE_BOOKING.value, severity_for(collisions),
                event, local=collisions, remote_shadow=None, result=result
            )
            return

        if cancelled_shadow is not None:
            self._apply_event(cancelled_shadow, event, seen_at)
            self.db.flush()
            result.updated.append(cancelled_shadow.id)
            logger.info(f"Reactivated shadow {cancelled_shadow.id} for external booking {event.external_id}")
            return

        shadow = Reservation(
            unit_id=connection.unit_id,
            source=ReservationSource.CHANNEL.value,
            payment_status=PaymentStatus.EXTERNAL.value,
            guests_count=1,
            connection_id=connection.id,
            external_id=event.external_id,
            guest_name=event.summary,
        )
        self._apply_event(shadow, event, seen_at)
        self.db.add(shadow)
        self.db.flush()
        result.created.append(shadow.id)
        logger.reservation_created(shadow.id, connection.unit_id, shadow.check_in, shadow.check_out, connection.platform)

    def _handle_moved(
        self,
        connection: ChannelConnection,
        event: ExternalEvent,
        shadow: Reservation,
        result: ReconcileResult,
        seen_at: datetime
    ) -> None:
        """Known event whose dates changed; the stale shadow stays put on conflict"""
        if self._has_blocking_conflict(connection.id, event.external_id, event.start_date, event.end_date):
            result.skipped.append(event.external_id)
            return

        collisions = self._collisions(connection, event, [shadow.id])
        if collisions:
            self._raise_conflict(
                connection, ConflictType.DATE_OVERLAP.value, severity_for(collisions),
                event, local=collisions, remote_shadow=shadow, result=result
            )
            return

        self._apply_event(shadow, event, seen_at)
        self.db.flush()
        result.updated.append(shadow.id)

    def _retire(
        self,
        connection: ChannelConnection,
        external_id: str,
        shadow: Optional[Reservation],
        result: ReconcileResult,
        seen_at: datetime
    ) -> None:
        """Event disappeared from the feed or was cancelled there"""
        if shadow is None or not shadow.is_active:
            return

        authority = self._authoritative_resolution(shadow)
        if authority is not None:
            if self._find_conflict(
                connection.id, external_id, ConflictType.CANCELLATION_SYNC.value,
                shadow.check_in, shadow.check_out
            ) is None:
                event = ExternalEvent(
                    external_id=external_id,
                    start_date=shadow.check_in,
                    end_date=shadow.check_out,
                    status="cancelled",
                )
                self._raise_conflict(
                    connection, ConflictType.CANCELLATION_SYNC.value, ConflictSeverity.MEDIUM.value,
                    event, local=[shadow], remote_shadow=None, result=result,
                    extra={"authoritative_conflict_id": authority.id}
                )
            return

        shadow.status = ReservationStatus.CANCELLED.value
        shadow.last_synced_at = seen_at
        self.db.flush()
        result.cancelled.append(shadow.id)
        logger.info(f"Cancelled shadow {shadow.id}: external booking {external_id} no longer in feed")

    def _check_price(self, connection: ChannelConnection, event: ExternalEvent, result: ReconcileResult) -> None:
        if event.price is None:
            return
        try:
            expected = self.pricing.calculate(connection.unit_id, event.start_date, event.end_date)
        except PricingError:
            # Nothing to compare against
            return

        if expected.accommodation_total == event.price:
            return
        if self._find_conflict(
            connection.id, event.external_id, ConflictType.PRICE_MISMATCH.value,
            event.start_date, event.end_date
        ) is not None:
            return

        self._raise_conflict(
            connection, ConflictType.PRICE_MISMATCH.value, ConflictSeverity.LOW.value,
            event, local=[], remote_shadow=None, result=result,
            extra={"expected_price": str(expected.accommodation_total), "feed_price": str(event.price)}
        )

    # ==========================================
    # Helpers
    # ==========================================

    def _apply_event(self, shadow: Reservation, event: ExternalEvent, seen_at: datetime) -> None:
        shadow.check_in = event.start_date
        shadow.check_out = event.end_date
        if shadow.status in (None, ReservationStatus.PENDING.value, ReservationStatus.CONFIRMED.value,
                             ReservationStatus.CANCELLED.value):
            shadow.status = shadow_status_for(event)
        if event.price is not None:
            shadow.total_price = event.price
        shadow.channel_metadata = {"summary": event.summary, "feed_status": event.status}
        shadow.last_synced_at = seen_at

    def _collisions(
        self,
        connection: ChannelConnection,
        event: ExternalEvent,
        exclude_ids: List[str]
    ) -> List[Reservation]:
        """
        Active local reservations and other connections' shadows sharing a
        night with the event. This connection's own shadows mirror one feed
        and are reconciled against each other by the diff itself.
        """
        candidates = self.store.active_reservations_intersecting(
            connection.unit_id, event.start_date, event.end_date, exclude_ids=exclude_ids
        )
        return [r for r in candidates if r.connection_id != connection.id]

    def _find_conflict(
        self,
        connection_id: str,
        external_id: str,
        conflict_type: str,
        remote_check_in: date,
        remote_check_out: date
    ) -> Optional[Conflict]:
        return self.db.query(Conflict).filter(
            Conflict.connection_id == connection_id,
            Conflict.remote_external_id == external_id,
            Conflict.conflict_type == conflict_type,
            Conflict.remote_check_in == remote_check_in,
            Conflict.remote_check_out == remote_check_out
        ).first()

    def _has_blocking_conflict(
        self,
        connection_id: str,
        external_id: str,
        remote_check_in: date,
        remote_check_out: date
    ) -> bool:
        """
        An open double_booking/date_overlap for these remote dates, or a
        closed one where the remote side did not win, stands in for the shadow.
        """
        conflicts = self.db.query(Conflict).filter(
            Conflict.connection_id == connection_id,
            Conflict.remote_external_id == external_id,
            Conflict.conflict_type.in_(BLOCKING_CONFLICT_TYPES),
            Conflict.remote_check_in == remote_check_in,
            Conflict.remote_check_out == remote_check_out
        ).all()
        return any(c.resolution_action != ResolutionAction.KEEP_REMOTE.value for c in conflicts)

    def _authoritative_resolution(self, shadow: Reservation) -> Optional[Conflict]:
        """A resolved conflict in which this shadow was the side kept"""
        resolved = self.db.query(Conflict).filter(
            Conflict.unit_id == shadow.unit_id,
            Conflict.status == ConflictStatus.RESOLVED.value,
            Conflict.resolution_action.in_(
                (ResolutionAction.KEEP_REMOTE.value, ResolutionAction.KEEP_LOCAL.value)
            )
        ).order_by(Conflict.resolved_at.desc()).all()

        for conflict in resolved:
            if conflict.resolution_action == ResolutionAction.KEEP_REMOTE.value:
                if conflict.remote_reservation_id == shadow.id:
                    return conflict
            elif shadow.id in conflict.local_ids:
                return conflict
        return None

    def _raise_conflict(
        self,
        connection: ChannelConnection,
        conflict_type: str,
        severity: str,
        event: ExternalEvent,
        local: List[Reservation],
        remote_shadow: Optional[Reservation],
        result: ReconcileResult,
        extra: Optional[Dict[str, Any]] = None
    ) -> Optional[Conflict]:
        existing = self._find_conflict(
            connection.id, event.external_id, conflict_type, event.start_date, event.end_date
        )
        if existing is not None:
            return None

        conflict_data = {
            "local": [describe_reservation(r) for r in local],
            "remote": {**event.to_dict(), "platform": connection.platform},
        }
        if remote_shadow is not None:
            conflict_data["remote_shadow"] = describe_reservation(remote_shadow)
        if extra:
            conflict_data.update(extra)

        conflict = Conflict(
            unit_id=connection.unit_id,
            org_id=connection.org_id,
            connection_id=connection.id,
            conflict_type=conflict_type,
            severity=severity,
            status=ConflictStatus.UNRESOLVED.value,
            local_reservation_id=local[0].id if local else None,
            local_reservation_ids=[r.id for r in local],
            remote_reservation_id=remote_shadow.id if remote_shadow else None,
            remote_external_id=event.external_id,
            remote_check_in=event.start_date,
            remote_check_out=event.end_date,
            conflict_data=conflict_data,
        )
        self.db.add(conflict)
        self.db.flush()

        result.conflicts.append(conflict.id)
        logger.conflict_raised(conflict.id, conflict_type, severity, event.external_id)
        return conflict
