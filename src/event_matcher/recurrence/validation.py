"""Availability business rules enforced when a slot is created or edited.

These checks run at slot-validity time, never during expansion: the expander
and aggregator accept any slot satisfying ``end > start``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from event_matcher.recurrence.errors import SlotConflictError, SlotValidationError
from event_matcher.recurrence.models import SATURDAY, SUNDAY, TimeSlot
from event_matcher.recurrence.overlap import find_conflict

DEFAULT_ALIGNMENT_MINUTES = 15
DEFAULT_MIN_DURATION_MINUTES = 30

END_BEFORE_START_MESSAGE = "End time must be after start time"
ALIGNMENT_MESSAGE = "Time slots must align to {minutes}-minute increments"
MIN_DURATION_MESSAGE = "Availability slots must be at least {minutes} minutes long"


@dataclass(frozen=True)
class RecurringPatternEntry:
    """One weekday entry of a recurring-availability batch."""

    weekday: int
    start: datetime
    end: datetime


def _is_aligned(value: datetime, alignment_minutes: int) -> bool:
    return value.second == 0 and value.microsecond == 0 and value.minute % alignment_minutes == 0


def validate_time_slot(
    start: datetime,
    end: datetime,
    *,
    alignment_minutes: int = DEFAULT_ALIGNMENT_MINUTES,
    min_duration_minutes: int = DEFAULT_MIN_DURATION_MINUTES,
) -> None:
    """Check the availability business rules for ``[start, end)``.

    Raises
    ------
    SlotValidationError
        If the end is not after the start, either bound is off the alignment
        grid, or the slot is shorter than the minimum duration.
    """
    if end <= start:
        raise SlotValidationError(END_BEFORE_START_MESSAGE)
    if not _is_aligned(start, alignment_minutes) or not _is_aligned(end, alignment_minutes):
        raise SlotValidationError(ALIGNMENT_MESSAGE.format(minutes=alignment_minutes))
    if end - start < timedelta(minutes=min_duration_minutes):
        raise SlotValidationError(MIN_DURATION_MESSAGE.format(minutes=min_duration_minutes))


def validate_slot(slot: TimeSlot, **kwargs: int) -> None:
    """``validate_time_slot`` applied to a slot's template bounds."""
    validate_time_slot(slot.start, slot.end, **kwargs)


def validate_recurring_pattern(
    entries: Iterable[RecurringPatternEntry], **kwargs: int
) -> list[str]:
    """Validate a batch of recurring weekday entries, collecting every error.

    Returns
    -------
    list[str]
        Human-readable errors; empty when the whole batch is valid.
    """
    errors: list[str] = []
    for entry in entries:
        if not SUNDAY <= entry.weekday <= SATURDAY:
            errors.append(f"Invalid day of week: {entry.weekday}")
        try:
            validate_time_slot(entry.start, entry.end, **kwargs)
        except SlotValidationError as exc:
            errors.append(f"Day {entry.weekday}: {exc}")
    return errors


def ensure_no_conflict(
    new_slot: TimeSlot,
    existing: Iterable[TimeSlot],
    *,
    exclude_id: str | None = None,
    exact_horizon_days: int | None = None,
) -> None:
    """Reject *new_slot* if it may overlap any of *existing*.

    Raises
    ------
    SlotConflictError
        Carrying the first conflicting slot.
    """
    conflicting = find_conflict(
        new_slot,
        existing,
        exclude_id=exclude_id,
        exact_horizon_days=exact_horizon_days,
    )
    if conflicting is not None:
        raise SlotConflictError(conflicting)
