"""
Tests for conflict resolution: keep_local, keep_remote (with re-check),
manual_merge, cancelled_both and ignore.
"""

import pytest
from datetime import date
from decimal import Decimal

from staysync.exceptions import ConflictStateError, ResolutionRejectedError, ValidationError, NotFoundError
from staysync.models.conflict import Conflict
from staysync.models.reservation import Reservation
from staysync.services.conflict_service import ConflictResolutionService
from staysync.services.feed_ingestor import ExternalEvent
from staysync.services.reconciler import Reconciler


def event(uid, start, end, price=None):
    return ExternalEvent(external_id=uid, start_date=start, end_date=end, status="confirmed",
                         price=Decimal(price) if price else None)


@pytest.fixture
def service(db):
    return ConflictResolutionService(db)


@pytest.fixture
def double_booking(db, unit, connection, make_reservation, today):
    """Local 08-01 -> 08-05 vs external x@airbnb 08-03 -> 08-06"""
    local = make_reservation(unit, date(2025, 8, 1), date(2025, 8, 5))
    result = Reconciler(db, today=today).reconcile(connection, [event("x@airbnb", date(2025, 8, 3), date(2025, 8, 6))])
    conflict = db.query(Conflict).filter(Conflict.id == result.conflicts[0]).one()
    return conflict, local


def shadow_for(db, connection, external_id):
    return db.query(Reservation).filter(
        Reservation.connection_id == connection.id,
        Reservation.external_id == external_id
    ).first()


class TestKeepRemote:

    def test_keep_remote_swaps_the_booking(self, db, connection, service, double_booking):
        conflict, local = double_booking

        resolved = service.resolve(conflict.id, "keep_remote", notes="Guest moved", resolved_by="owner@example.com")

        db.refresh(local)
        assert local.status == "cancelled"
        shadow = shadow_for(db, connection, "x@airbnb")
        assert shadow.status == "confirmed"
        assert (shadow.check_in, shadow.check_out) == (date(2025, 8, 3), date(2025, 8, 6))
        assert resolved.status == "resolved"
        assert resolved.resolution_action == "keep_remote"
        assert resolved.remote_reservation_id == shadow.id
        assert resolved.resolved_by == "owner@example.com"
        assert resolved.resolved_at is not None

    def test_keep_remote_rejected_when_new_booking_collides(
        self, db, unit, connection, make_reservation, service, double_booking
    ):
        """A booking for 08-05 -> 08-07 arrived after detection"""
        conflict, local = double_booking
        make_reservation(unit, date(2025, 8, 5), date(2025, 8, 7))

        with pytest.raises(ResolutionRejectedError):
            service.resolve(conflict.id, "keep_remote")

        db.refresh(local)
        db.refresh(conflict)
        assert local.status == "confirmed"
        assert conflict.status == "unresolved"
        assert shadow_for(db, connection, "x@airbnb") is None

    def test_keep_remote_rejected_when_event_left_the_feed(self, db, connection, service, double_booking, today):
        conflict, local = double_booking
        Reconciler(db, today=today).reconcile(connection, [])

        with pytest.raises(ResolutionRejectedError):
            service.resolve(conflict.id, "keep_remote")

        db.refresh(local)
        assert local.status == "confirmed"

    def test_keep_remote_on_date_overlap_moves_the_shadow(
        self, db, unit, connection, make_reservation, service, today
    ):
        reconciler = Reconciler(db, today=today)
        reconciler.reconcile(connection, [event("a", date(2025, 8, 1), date(2025, 8, 5))])
        local = make_reservation(unit, date(2025, 8, 10), date(2025, 8, 12))
        result = reconciler.reconcile(connection, [event("a", date(2025, 8, 9), date(2025, 8, 11))])

        service.resolve(result.conflicts[0], "keep_remote")

        db.refresh(local)
        shadow = shadow_for(db, connection, "a")
        assert local.status == "cancelled"
        assert (shadow.check_in, shadow.check_out) == (date(2025, 8, 9), date(2025, 8, 11))


class TestOtherActions:

    def test_keep_local_leaves_local_booking(self, db, service, double_booking):
        conflict, local = double_booking

        resolved = service.resolve(conflict.id, "keep_local")

        db.refresh(local)
        assert local.status == "confirmed"
        assert resolved.status == "resolved"

    def test_keep_local_cancels_stale_shadow(self, db, unit, connection, make_reservation, service, today):
        reconciler = Reconciler(db, today=today)
        reconciler.reconcile(connection, [event("a", date(2025, 8, 1), date(2025, 8, 5))])
        make_reservation(unit, date(2025, 8, 10), date(2025, 8, 12))
        result = reconciler.reconcile(connection, [event("a", date(2025, 8, 9), date(2025, 8, 11))])

        service.resolve(result.conflicts[0], "keep_local")

        assert shadow_for(db, connection, "a").status == "cancelled"

    def test_cancelled_both(self, db, unit, connection, make_reservation, service, today):
        reconciler = Reconciler(db, today=today)
        reconciler.reconcile(connection, [event("a", date(2025, 8, 1), date(2025, 8, 5))])
        local = make_reservation(unit, date(2025, 8, 10), date(2025, 8, 12))
        result = reconciler.reconcile(connection, [event("a", date(2025, 8, 9), date(2025, 8, 11))])

        service.resolve(result.conflicts[0], "cancelled_both")

        db.refresh(local)
        assert local.status == "cancelled"
        assert shadow_for(db, connection, "a").status == "cancelled"

    def test_manual_merge_changes_no_booking(self, db, service, double_booking):
        conflict, local = double_booking

        resolved = service.resolve(conflict.id, "manual_merge", notes="Handled by phone")

        db.refresh(local)
        assert local.status == "confirmed"
        assert resolved.resolution_action == "manual_merge"
        assert resolved.resolution_notes == "Handled by phone"

    def test_price_mismatch_only_records_outcome(self, db, connection, service, today):
        result = Reconciler(db, today=today).reconcile(
            connection, [event("p", date(2025, 8, 10), date(2025, 8, 12), price="250.00")]
        )
        shadow = shadow_for(db, connection, "p")

        resolved = service.resolve(result.conflicts[0], "cancelled_both")

        db.refresh(shadow)
        assert shadow.status == "confirmed"
        assert resolved.status == "resolved"


class TestEventSpanningSeveralBookings:
    """External 08-02 -> 08-06 over local A 08-01 -> 08-04 and B 08-04 -> 08-08"""

    @pytest.fixture
    def wide_conflict(self, db, unit, connection, make_reservation, today):
        first = make_reservation(unit, date(2025, 8, 1), date(2025, 8, 4))
        second = make_reservation(unit, date(2025, 8, 4), date(2025, 8, 8))
        result = Reconciler(db, today=today).reconcile(
            connection, [event("wide@airbnb", date(2025, 8, 2), date(2025, 8, 6))]
        )
        conflict = db.query(Conflict).filter(Conflict.id == result.conflicts[0]).one()
        return conflict, first, second

    def test_conflict_records_every_local_booking(self, wide_conflict):
        conflict, first, second = wide_conflict

        assert conflict.local_reservation_id == first.id
        assert conflict.local_reservation_ids == [first.id, second.id]

    def test_cancelled_both_cancels_every_local_booking(self, db, service, wide_conflict):
        conflict, first, second = wide_conflict

        service.resolve(conflict.id, "cancelled_both")

        db.refresh(first)
        db.refresh(second)
        assert first.status == "cancelled"
        assert second.status == "cancelled"

    def test_keep_remote_replaces_every_local_booking(self, db, connection, service, wide_conflict):
        conflict, first, second = wide_conflict

        resolved = service.resolve(conflict.id, "keep_remote")

        db.refresh(first)
        db.refresh(second)
        assert resolved.status == "resolved"
        assert first.status == "cancelled"
        assert second.status == "cancelled"
        shadow = shadow_for(db, connection, "wide@airbnb")
        assert (shadow.check_in, shadow.check_out) == (date(2025, 8, 2), date(2025, 8, 6))

    def test_keep_local_keeps_every_local_booking(self, db, service, wide_conflict):
        conflict, first, second = wide_conflict

        service.resolve(conflict.id, "keep_local")

        db.refresh(first)
        db.refresh(second)
        assert first.status == "confirmed"
        assert second.status == "confirmed"


class TestConflictStates:

    def test_ignore(self, db, service, double_booking):
        conflict, local = double_booking

        ignored = service.ignore(conflict.id, notes="Known overbooking")

        db.refresh(local)
        assert ignored.status == "ignored"
        assert ignored.resolution_action is None
        assert local.status == "confirmed"

    @pytest.mark.parametrize("close", ["resolve", "ignore"])
    def test_closed_conflicts_are_terminal(self, service, double_booking, close):
        conflict, _ = double_booking
        if close == "resolve":
            service.resolve(conflict.id, "keep_local")
        else:
            service.ignore(conflict.id)

        with pytest.raises(ConflictStateError):
            service.resolve(conflict.id, "keep_remote")
        with pytest.raises(ConflictStateError):
            service.ignore(conflict.id)

    def test_unknown_action(self, service, double_booking):
        conflict, _ = double_booking

        with pytest.raises(ValidationError):
            service.resolve(conflict.id, "flip_a_coin")

    def test_unknown_conflict(self, service):
        with pytest.raises(NotFoundError):
            service.resolve("missing", "keep_local")

    def test_list_defaults_to_open_conflicts(self, unit, service, double_booking):
        conflict, _ = double_booking

        assert [c.id for c in service.list_conflicts(unit_id=unit.id)] == [conflict.id]

        service.ignore(conflict.id)

        assert service.list_conflicts(unit_id=unit.id) == []
        assert [c.id for c in service.list_conflicts(unit_id=unit.id, status=None)] == [conflict.id]
