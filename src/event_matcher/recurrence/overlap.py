"""Overlap detection between two slots, recurring or not, without full expansion.

Decision table:

- one-time vs one-time: plain interval test.
- recurring vs recurring: time-of-day ranges overlap, weekday sets are
  compatible, and the active date ranges ``[start_date, end_date)`` intersect.
  Exception dates are ignored, so the answer is a coarse over-approximation
  unless an exact horizon is requested.
- recurring vs one-time: the recurring rule occurs (active range, not an
  exception, day-membership) on a date whose stamped occurrence intersects the
  one-time slot.

Time-of-day ranges that cross midnight are compared against the neighbouring
days their duration reaches, with the weekday sets shifted accordingly.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from event_matcher.recurrence.expander import expand
from event_matcher.recurrence.models import TimeSlot

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60
_ONE_DAY = timedelta(days=1)


def intervals_overlap(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open interval test: ``[a_start, a_end)`` meets ``[b_start, b_end)``."""
    return a_start < b_end and a_end > b_start


def _time_of_day_range(slot: TimeSlot) -> tuple[int, int]:
    start = slot.start
    offset = start.hour * 3600 + start.minute * 60 + start.second
    return offset, offset + int(slot.duration.total_seconds())


def _shifted(weekdays: frozenset[int], days: int) -> frozenset[int]:
    return frozenset((weekday + days) % 7 for weekday in weekdays)


def _date_ranges_intersect(a: TimeSlot, b: TimeSlot) -> bool:
    a_start, a_end = a.start_date, a.rule.end_date
    b_start, b_end = b.start_date, b.rule.end_date
    # A range whose exclusive end is on or before its start is empty.
    if a_end is not None and a_end <= a_start:
        return False
    if b_end is not None and b_end <= b_start:
        return False
    if a_end is not None and b_start >= a_end:
        return False
    if b_end is not None and a_start >= b_end:
        return False
    return True


def _recurring_pattern_overlap(a: TimeSlot, b: TimeSlot) -> bool:
    if not _date_ranges_intersect(a, b):
        return False

    a_from, a_to = _time_of_day_range(a)
    b_from, b_to = _time_of_day_range(b)
    a_days = a.rule.weekday_set()
    b_days = b.rule.weekday_set()

    # b's occurrence lands `shift` days after a's occurrence day.
    for shift in range(-(b_to // SECONDS_PER_DAY) - 1, a_to // SECONDS_PER_DAY + 2):
        offset = shift * SECONDS_PER_DAY
        if not (a_from < b_to + offset and a_to > b_from + offset):
            continue
        if _shifted(a_days, shift) & b_days:
            return True
    return False


def _recurring_hits_one_time(recurring: TimeSlot, one_time: TimeSlot) -> bool:
    rule = recurring.rule
    day = (one_time.start - recurring.duration).date()
    last = one_time.end.date()
    while day <= last:
        if rule.occurs_on(day, recurring.start_date):
            start, end = recurring.occurrence_on(day)
            if intervals_overlap(start, end, one_time.start, one_time.end):
                return True
        day += _ONE_DAY
    return False


def _instances_collide(a: TimeSlot, b: TimeSlot, horizon_days: int) -> bool:
    """Compare actual occurrences of two recurring slots over a bounded horizon."""
    anchor = max(a.start_date, b.start_date)
    lead = max(a.duration, b.duration)
    window_start = datetime.combine(anchor, datetime.min.time(), tzinfo=a.start.tzinfo) - lead
    window_end = window_start + lead + timedelta(days=horizon_days)

    left = expand(a, window_start, window_end)
    right = expand(b, window_start, window_end)
    i = j = 0
    while i < len(left) and j < len(right):
        if left[i].overlaps(right[j].start, right[j].end):
            return True
        if left[i].end <= right[j].end:
            i += 1
        else:
            j += 1
    return False


def may_overlap(a: TimeSlot, b: TimeSlot, *, exact_horizon_days: int | None = None) -> bool:
    """Decide whether two slots can ever coincide in time.

    Parameters
    ----------
    a, b:
        The slots to compare; each may be recurring or one-time.  The result is
        symmetric in ``a`` and ``b``.
    exact_horizon_days:
        When set, a recurring-vs-recurring pair that passes the coarse test and
        carries exception dates is confirmed by comparing actual occurrences
        over this many days from the later start date.  ``None`` keeps the
        coarse (exception-blind) answer.

    Returns
    -------
    bool
        ``True`` when the slots may overlap.  Slots with malformed rules never
        overlap anything.
    """
    if a.rule.malformed_reason() is not None or b.rule.malformed_reason() is not None:
        return False

    if not a.is_recurring and not b.is_recurring:
        return intervals_overlap(a.start, a.end, b.start, b.end)

    if a.is_recurring and b.is_recurring:
        if not _recurring_pattern_overlap(a, b):
            return False
        has_exceptions = bool(a.rule.exception_dates or b.rule.exception_dates)
        if exact_horizon_days is not None and has_exceptions:
            return _instances_collide(a, b, exact_horizon_days)
        return True

    recurring, one_time = (a, b) if a.is_recurring else (b, a)
    return _recurring_hits_one_time(recurring, one_time)


def find_conflict(
    new_slot: TimeSlot,
    existing: Iterable[TimeSlot],
    *,
    exclude_id: str | None = None,
    exact_horizon_days: int | None = None,
) -> TimeSlot | None:
    """Return the first existing slot that may overlap *new_slot*, or ``None``.

    ``exclude_id`` skips the slot being edited so it never conflicts with its
    own previous version.
    """
    for slot in existing:
        if exclude_id is not None and slot.id == exclude_id:
            continue
        if may_overlap(new_slot, slot, exact_horizon_days=exact_horizon_days):
            logger.debug("Slot %s conflicts with existing slot %s", new_slot.id, slot.id)
            return slot
    return None
