"""
Tests for the Availability Evaluator and rule write-time invariants.
"""

import pytest
from datetime import date
from decimal import Decimal

from staysync.exceptions import ValidationError, RuleOverlapError, NotFoundError, DatesOccupiedError
from staysync.models.availability_rule import AvailabilityRule
from staysync.services.availability_service import AvailabilityEvaluator
from staysync.services.interval_store import IntervalStore


class TestBlockedRules:

    def test_blocked_rule_makes_range_unavailable(self, db, unit, make_rule):
        """A blocked rule for 2025-07-01..2025-07-10 blocks a 07-05 -> 07-07 stay"""
        rule = make_rule(unit, "blocked", date(2025, 7, 1), date(2025, 7, 10), reason="Renovation")

        verdict = AvailabilityEvaluator(db).check(unit.id, date(2025, 7, 5), date(2025, 7, 7))

        assert verdict.available is False
        assert verdict.reason == "blocked"
        assert [r["id"] for r in verdict.blocking_rules] == [rule.id]
        assert verdict.blocking_rules[0]["reason"] == "Renovation"

    def test_rule_end_date_is_inclusive(self, db, unit, make_rule):
        make_rule(unit, "blocked", date(2025, 7, 1), date(2025, 7, 10))
        evaluator = AvailabilityEvaluator(db)

        assert evaluator.check(unit.id, date(2025, 7, 10), date(2025, 7, 12)).reason == "blocked"
        assert evaluator.check(unit.id, date(2025, 7, 11), date(2025, 7, 12)).available is True

    def test_stay_checking_out_on_block_start_is_free(self, db, unit, make_rule):
        make_rule(unit, "blocked", date(2025, 7, 1), date(2025, 7, 10))

        verdict = AvailabilityEvaluator(db).check(unit.id, date(2025, 6, 28), date(2025, 7, 1))

        assert verdict.available is True

    def test_blocked_wins_over_reserved(self, db, unit, make_rule, make_reservation):
        make_rule(unit, "blocked", date(2025, 7, 1), date(2025, 7, 10))
        make_reservation(unit, date(2025, 7, 2), date(2025, 7, 4))

        verdict = AvailabilityEvaluator(db).check(unit.id, date(2025, 7, 2), date(2025, 7, 4))

        assert verdict.reason == "blocked"


class TestReservations:

    @pytest.mark.parametrize("check_in,check_out", [
        (date(2025, 7, 30), date(2025, 8, 2)),   # overlaps check-in edge
        (date(2025, 8, 4), date(2025, 8, 8)),    # overlaps check-out edge
        (date(2025, 8, 2), date(2025, 8, 3)),    # inside
        (date(2025, 7, 20), date(2025, 8, 20)),  # contains
    ])
    def test_intersecting_ranges_are_reserved(self, db, unit, make_reservation, check_in, check_out):
        existing = make_reservation(unit, date(2025, 8, 1), date(2025, 8, 5))

        verdict = AvailabilityEvaluator(db).check(unit.id, check_in, check_out)

        assert verdict.available is False
        assert verdict.reason == "reserved"
        assert verdict.conflicting_reservation_ids == [existing.id]

    @pytest.mark.parametrize("check_in,check_out", [
        (date(2025, 8, 5), date(2025, 8, 7)),   # check-in on previous check-out
        (date(2025, 7, 28), date(2025, 8, 1)),  # check-out on next check-in
    ])
    def test_back_to_back_stays_are_available(self, db, unit, make_reservation, check_in, check_out):
        make_reservation(unit, date(2025, 8, 1), date(2025, 8, 5))

        assert AvailabilityEvaluator(db).check(unit.id, check_in, check_out).available is True

    def test_cancelled_reservation_frees_dates(self, db, unit, make_reservation):
        make_reservation(unit, date(2025, 8, 1), date(2025, 8, 5), status="cancelled")

        assert AvailabilityEvaluator(db).check(unit.id, date(2025, 8, 2), date(2025, 8, 4)).available is True

    @pytest.mark.parametrize("status", ["pending", "confirmed", "checked_in", "checked_out"])
    def test_every_non_cancelled_status_holds_dates(self, db, unit, make_reservation, status):
        make_reservation(unit, date(2025, 8, 1), date(2025, 8, 5), status=status)

        assert AvailabilityEvaluator(db).check(unit.id, date(2025, 8, 2), date(2025, 8, 4)).reason == "reserved"

    def test_shadow_reservation_blocks_like_local(self, db, unit, connection, make_reservation):
        make_reservation(unit, date(2025, 8, 1), date(2025, 8, 5), connection=connection, external_id="abc@airbnb")

        assert AvailabilityEvaluator(db).check(unit.id, date(2025, 8, 3), date(2025, 8, 6)).reason == "reserved"

    def test_other_units_do_not_interfere(self, db, make_unit, make_reservation):
        first = make_unit(name="A")
        second = make_unit(name="B")
        make_reservation(first, date(2025, 8, 1), date(2025, 8, 5))

        assert AvailabilityEvaluator(db).check(second.id, date(2025, 8, 1), date(2025, 8, 5)).available is True


class TestMinimumStay:

    def test_short_stay_inside_min_stay_rule(self, db, unit, make_rule):
        make_rule(unit, "min_stay", date(2025, 9, 1), date(2025, 9, 30), min_nights=3)

        verdict = AvailabilityEvaluator(db).check(unit.id, date(2025, 9, 10), date(2025, 9, 12))

        assert verdict.available is False
        assert verdict.reason == "minimum stay not met"
        assert verdict.min_nights == 3

    def test_long_enough_stay_is_available(self, db, unit, make_rule):
        make_rule(unit, "min_stay", date(2025, 9, 1), date(2025, 9, 30), min_nights=3)

        assert AvailabilityEvaluator(db).check(unit.id, date(2025, 9, 10), date(2025, 9, 13)).available is True

    def test_partial_overlap_binds(self, db, unit, make_rule):
        """Any intersection with the rule counts, even a single edge night"""
        make_rule(unit, "min_stay", date(2025, 9, 1), date(2025, 9, 30), min_nights=3)
        evaluator = AvailabilityEvaluator(db)

        assert evaluator.check(unit.id, date(2025, 8, 31), date(2025, 9, 2)).reason == "minimum stay not met"
        # Checking out on the rule's first day does not touch it
        assert evaluator.check(unit.id, date(2025, 8, 30), date(2025, 9, 1)).available is True

    def test_strictest_intersecting_rule_is_reported(self, db, unit, make_rule):
        make_rule(unit, "min_stay", date(2025, 9, 1), date(2025, 9, 5), min_nights=3)
        strict = make_rule(unit, "min_stay", date(2025, 9, 6), date(2025, 9, 10), min_nights=5)

        verdict = AvailabilityEvaluator(db).check(unit.id, date(2025, 9, 4), date(2025, 9, 8))

        assert verdict.reason == "minimum stay not met"
        assert verdict.min_nights == 5
        assert verdict.blocking_rules[0]["id"] == strict.id

    def test_reserved_is_reported_before_min_stay(self, db, unit, make_rule, make_reservation):
        make_rule(unit, "min_stay", date(2025, 9, 1), date(2025, 9, 30), min_nights=7)
        make_reservation(unit, date(2025, 9, 10), date(2025, 9, 12))

        assert AvailabilityEvaluator(db).check(unit.id, date(2025, 9, 10), date(2025, 9, 11)).reason == "reserved"


class TestInvalidInput:

    @pytest.mark.parametrize("check_in,check_out", [
        (date(2025, 7, 5), date(2025, 7, 5)),
        (date(2025, 7, 5), date(2025, 7, 1)),
    ])
    def test_checkout_not_after_checkin_is_rejected(self, db, unit, check_in, check_out):
        with pytest.raises(ValidationError) as exc_info:
            AvailabilityEvaluator(db).check(unit.id, check_in, check_out)
        assert exc_info.value.field == "check_out"

    def test_unknown_unit(self, db):
        with pytest.raises(NotFoundError):
            AvailabilityEvaluator(db).check("missing", date(2025, 7, 1), date(2025, 7, 2))

    def test_evaluation_has_no_side_effects(self, db, unit, make_reservation):
        from staysync.models.reservation import Reservation
        make_reservation(unit, date(2025, 8, 1), date(2025, 8, 5))

        evaluator = AvailabilityEvaluator(db)
        first = evaluator.check(unit.id, date(2025, 8, 10), date(2025, 8, 12))
        second = evaluator.check(unit.id, date(2025, 8, 10), date(2025, 8, 12))

        assert first.to_dict() == second.to_dict()
        assert db.query(Reservation).count() == 1


class TestRuleInvariants:

    def test_same_kind_rules_cannot_overlap(self, db, unit):
        store = IntervalStore(db)
        existing = store.create_rule(unit.id, "blocked", date(2025, 7, 1), date(2025, 7, 10))

        with pytest.raises(RuleOverlapError) as exc_info:
            store.create_rule(unit.id, "blocked", date(2025, 7, 10), date(2025, 7, 15))

        assert exc_info.value.conflicting_rule_id == existing.id
        assert exc_info.value.field == "start_date"

    def test_adjacent_same_kind_rules_are_allowed(self, db, unit):
        store = IntervalStore(db)
        store.create_rule(unit.id, "blocked", date(2025, 7, 1), date(2025, 7, 10))
        store.create_rule(unit.id, "blocked", date(2025, 7, 11), date(2025, 7, 15))

        assert len(store.list_rules(unit.id, kind="blocked")) == 2

    def test_different_kinds_may_overlap(self, db, unit):
        store = IntervalStore(db)
        store.create_rule(unit.id, "blocked", date(2025, 7, 1), date(2025, 7, 10))
        store.create_rule(unit.id, "min_stay", date(2025, 7, 1), date(2025, 7, 31), min_nights=2)
        store.create_rule(unit.id, "price_override", date(2025, 7, 5), date(2025, 7, 6),
                          price_per_night=Decimal("180"))

        assert len(store.list_rules(unit.id)) == 3

    def test_start_after_end_is_rejected(self, db, unit):
        with pytest.raises(ValidationError) as exc_info:
            IntervalStore(db).create_rule(unit.id, "blocked", date(2025, 7, 10), date(2025, 7, 1))
        assert exc_info.value.field == "end_date"

    def test_single_day_rule_is_valid(self, db, unit):
        rule = IntervalStore(db).create_rule(unit.id, "blocked", date(2025, 7, 4), date(2025, 7, 4))
        assert rule.start_date == rule.end_date

    @pytest.mark.parametrize("kind,payload,field", [
        ("min_stay", {}, "min_nights"),
        ("min_stay", {"min_nights": 0}, "min_nights"),
        ("price_override", {}, "price_per_night"),
        ("price_override", {"price_per_night": Decimal("-1")}, "price_per_night"),
        ("discount", {}, "kind"),
    ])
    def test_missing_or_bad_payload(self, db, unit, kind, payload, field):
        with pytest.raises(ValidationError) as exc_info:
            IntervalStore(db).create_rule(unit.id, kind, date(2025, 7, 1), date(2025, 7, 2), **payload)
        assert exc_info.value.field == field

    def test_update_checks_overlap_excluding_itself(self, db, unit):
        store = IntervalStore(db)
        rule = store.create_rule(unit.id, "blocked", date(2025, 7, 1), date(2025, 7, 10))
        store.create_rule(unit.id, "blocked", date(2025, 7, 20), date(2025, 7, 25))

        moved = store.update_rule(rule.id, {"end_date": date(2025, 7, 15)})
        assert moved.end_date == date(2025, 7, 15)

        with pytest.raises(RuleOverlapError):
            store.update_rule(rule.id, {"end_date": date(2025, 7, 21)})

    def test_failed_update_is_not_persisted(self, db, unit):
        store = IntervalStore(db)
        rule = store.create_rule(unit.id, "blocked", date(2025, 7, 1), date(2025, 7, 10))

        with pytest.raises(ValidationError):
            store.update_rule(rule.id, {"start_date": date(2025, 7, 20)})

        db.refresh(rule)
        assert rule.start_date == date(2025, 7, 1)


class TestBulkBlock:

    def test_blocks_every_selected_unit(self, db, make_unit):
        first = make_unit(name="a")
        second = make_unit(name="b")

        rules = IntervalStore(db).bulk_block([first.id, second.id], date(2025, 12, 24), date(2025, 12, 26),
                                             reason="Owner stay", org_id="org-1")

        assert sorted(rule.unit_id for rule in rules) == sorted([first.id, second.id])
        assert all(rule.kind == "blocked" and rule.reason == "Owner stay" for rule in rules)
        verdict = AvailabilityEvaluator(db).check(second.id, date(2025, 12, 26), date(2025, 12, 27))
        assert verdict.available is False

    def test_reservation_on_one_unit_refuses_all(self, db, make_unit, make_reservation):
        free = make_unit(name="free")
        booked = make_unit(name="booked")
        stay = make_reservation(booked, date(2025, 12, 20), date(2025, 12, 25))

        with pytest.raises(DatesOccupiedError) as exc_info:
            IntervalStore(db).bulk_block([free.id, booked.id], date(2025, 12, 24), date(2025, 12, 26))

        assert exc_info.value.reservation_ids == [stay.id]
        assert exc_info.value.status_code == 409
        assert db.query(AvailabilityRule).count() == 0

    def test_checkout_on_first_blocked_day_is_allowed(self, db, unit, make_reservation):
        make_reservation(unit, date(2025, 12, 20), date(2025, 12, 24))

        rules = IntervalStore(db).bulk_block([unit.id], date(2025, 12, 24), date(2025, 12, 26))

        assert len(rules) == 1

    def test_cancelled_reservation_does_not_refuse(self, db, unit, make_reservation):
        make_reservation(unit, date(2025, 12, 24), date(2025, 12, 26), status="cancelled")

        assert len(IntervalStore(db).bulk_block([unit.id], date(2025, 12, 24), date(2025, 12, 26))) == 1

    def test_existing_block_on_one_unit_refuses_all(self, db, make_unit):
        free = make_unit(name="free")
        blocked = make_unit(name="blocked")
        store = IntervalStore(db)
        store.create_rule(blocked.id, "blocked", date(2025, 12, 26), date(2025, 12, 28))

        with pytest.raises(RuleOverlapError):
            store.bulk_block([free.id, blocked.id], date(2025, 12, 24), date(2025, 12, 26))

        assert store.list_rules(free.id) == []

    def test_duplicate_ids_block_once(self, db, unit):
        rules = IntervalStore(db).bulk_block([unit.id, unit.id], date(2025, 12, 24), date(2025, 12, 24))

        assert len(rules) == 1

    @pytest.mark.parametrize("unit_ids,start,end,field", [
        ([], date(2025, 12, 24), date(2025, 12, 26), "unit_ids"),
        (None, date(2025, 12, 26), date(2025, 12, 24), "end_date"),
    ])
    def test_invalid_request(self, db, unit, unit_ids, start, end, field):
        with pytest.raises(ValidationError) as exc_info:
            IntervalStore(db).bulk_block(unit_ids if unit_ids is not None else [unit.id], start, end)
        assert exc_info.value.field == field

    def test_unit_from_another_org_is_rejected(self, db, make_unit):
        mine = make_unit(name="mine")
        theirs = make_unit(name="theirs", org_id="org-2")

        with pytest.raises(ValidationError):
            IntervalStore(db).bulk_block([mine.id, theirs.id], date(2025, 12, 24), date(2025, 12, 26),
                                         org_id="org-1")

        assert db.query(AvailabilityRule).count() == 0

    def test_unknown_unit(self, db, unit):
        with pytest.raises(NotFoundError):
            IntervalStore(db).bulk_block([unit.id, "missing"], date(2025, 12, 24), date(2025, 12, 26))
