"""
Date range helpers.

Stays are half-open ``[check_in, check_out)``. Availability rules are stored
as closed ``[start_date, end_date]``; ``rule_end_exclusive`` turns a rule into
the half-open range it blocks so it can be tested with ``ranges_intersect``.

These are the in-Python checks. The interval store's SQL filters spell out
the same comparisons in the query itself.
"""

from datetime import date, timedelta
from typing import Iterator


def ranges_intersect(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open ranges [a_start, a_end) and [b_start, b_end) share a night"""
    return a_start < b_end and b_start < a_end


def closed_ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Closed ranges [a_start, a_end] and [b_start, b_end] share a day"""
    return a_start <= b_end and b_start <= a_end


def rule_end_exclusive(end_date: date) -> date:
    return end_date + timedelta(days=1)


def rule_covers_night(start_date: date, end_date: date, night: date) -> bool:
    """A closed rule [start_date, end_date] applies to the night starting on ``night``"""
    return ranges_intersect(start_date, rule_end_exclusive(end_date), night, night + timedelta(days=1))


def nights_between(check_in: date, check_out: date) -> int:
    return (check_out - check_in).days


def iter_nights(check_in: date, check_out: date) -> Iterator[date]:
    current = check_in
    while current < check_out:
        yield current
        current += timedelta(days=1)
