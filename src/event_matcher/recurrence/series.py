"""Pure edits to recurring series used by the slot-editing workflow.

Every function returns new slot values; inputs are never mutated.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Literal, TypeVar

from event_matcher.recurrence.models import (
    DailyRule,
    TimeSlot,
    WeeklySingleDayRule,
    as_date,
    weekday_of,
)

_SlotT = TypeVar("_SlotT", bound=TimeSlot)


def _require_recurring(slot: TimeSlot, operation: str) -> None:
    if not slot.is_recurring:
        raise ValueError(f"{operation} requires a recurring slot, got one-time slot {slot.id}")


def add_exception_date(slot: _SlotT, when: date | datetime | str) -> _SlotT:
    """Suppress the occurrence on *when*; a duplicate exception is a no-op."""
    _require_recurring(slot, "add_exception_date")
    day = as_date(when)
    if day in slot.rule.exception_dates:
        return slot
    rule = slot.rule.model_copy(update={"exception_dates": slot.rule.exception_dates | {day}})
    return slot.model_copy(update={"rule": rule})


def set_end_date(slot: _SlotT, end_date: date | datetime | str) -> _SlotT:
    """Set the exclusive end date and drop exception dates after it."""
    _require_recurring(slot, "set_end_date")
    end = as_date(end_date)
    kept = frozenset(day for day in slot.rule.exception_dates if day <= end)
    rule = slot.rule.model_copy(update={"end_date": end, "exception_dates": kept})
    return slot.model_copy(update={"rule": rule})


def _first_occurrence_day(slot: TimeSlot, at: date) -> date | None:
    """First day on or after *at* that the rule's pattern selects, exceptions included."""
    rule = slot.rule
    period = 7 * getattr(rule, "interval", 1)
    for offset in range(period):
        day = at + timedelta(days=offset)
        if not rule.is_active_on(day, slot.start_date):
            return None
        if rule.matches(day, slot.start_date):
            return day
    return None


def split_series(
    slot: _SlotT, at: date | datetime | str, *, tail_id: str | None = None
) -> tuple[_SlotT, _SlotT]:
    """Split a series into the part before *at* and the part from *at* onwards.

    The head keeps the slot id and ends (exclusively) on *at*.  The tail is
    anchored on the first day on or after *at* that the rule selects, so
    interval rules keep their phase and ``expand(head) + expand(tail)``
    reproduces the original series.  The tail keeps the original end date and
    the exception dates on or after *at*, and gets ``tail_id`` (default
    ``"{id}-{at}"``).

    Raises
    ------
    ValueError
        If the slot is not recurring or its rule is malformed, if *at* is not
        after the start date or is on or after the series' end date, or if no
        occurrence remains from *at* onwards.
    """
    _require_recurring(slot, "split_series")
    day = as_date(at)
    reason = slot.rule.malformed_reason()
    if reason is not None:
        raise ValueError(f"cannot split slot {slot.id} with malformed recurrence: {reason}")
    if day <= slot.start_date:
        raise ValueError(f"split date {day} must be after the series start {slot.start_date}")
    if slot.rule.end_date is not None and day >= slot.rule.end_date:
        raise ValueError(f"split date {day} must be before the series end {slot.rule.end_date}")

    anchor = _first_occurrence_day(slot, day)
    if anchor is None:
        raise ValueError(f"series {slot.id} has no occurrence on or after {day}")

    head_exceptions = frozenset(item for item in slot.rule.exception_dates if item < day)
    tail_exceptions = slot.rule.exception_dates - head_exceptions

    head_rule = slot.rule.model_copy(update={"end_date": day, "exception_dates": head_exceptions})
    tail_rule = slot.rule.model_copy(update={"exception_dates": tail_exceptions})
    tail_start, tail_end = slot.occurrence_on(anchor)

    head = slot.model_copy(update={"rule": head_rule})
    tail = slot.model_copy(
        update={
            "id": tail_id or f"{slot.id}-{day.isoformat()}",
            "start": tail_start,
            "end": tail_end,
            "rule": tail_rule,
        }
    )
    return head, tail


def make_recurring(
    slot: _SlotT, frequency: Literal["daily", "weekly"], *, end_date: date | None = None
) -> _SlotT:
    """Turn a one-time slot into a daily or weekly series anchored on its start."""
    if frequency == "daily":
        rule = DailyRule(end_date=end_date)
    elif frequency == "weekly":
        rule = WeeklySingleDayRule(weekday=weekday_of(slot.start_date), end_date=end_date)
    else:
        raise ValueError(f"Unsupported frequency: {frequency!r}")
    return slot.model_copy(update={"rule": rule})

