"""Instance expansion: turn a slot and a query window into concrete occurrences.

The expander walks candidate calendar dates bounded by the query window, the
slot's start date and the rule's exclusive end date, applies the rule's
day-membership test and exception list, and stamps the slot template onto each
surviving date.  It never iterates beyond the query window.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta

from event_matcher.core.telemetry import engine_span
from event_matcher.recurrence.errors import InvalidWindowError
from event_matcher.recurrence.models import (
    BusyBlock,
    DataQualityWarning,
    ExpandedInstance,
    TimeSlot,
    as_date,
)

logger = logging.getLogger(__name__)

# Look-ahead bounds for next_occurrence(); weekly rules are checked a year out,
# daily rules a (leap) year of days.
NEXT_OCCURRENCE_WEEKS = 52
NEXT_OCCURRENCE_DAYS = 366

_ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class ExpansionResult:
    """Instances expanded from many slots plus any data-quality warnings."""

    instances: list[ExpandedInstance] = field(default_factory=list)
    warnings: list[DataQualityWarning] = field(default_factory=list)


def check_window(window_start: datetime, window_end: datetime) -> None:
    """Reject naive or inverted query windows.

    Raises
    ------
    InvalidWindowError
        If either bound is naive or ``window_start > window_end``.
    """
    if window_start.tzinfo is None or window_end.tzinfo is None:
        raise InvalidWindowError("Query window bounds must be timezone-aware")
    if window_start > window_end:
        raise InvalidWindowError(
            f"Query window start {window_start.isoformat()} is after end {window_end.isoformat()}"
        )


def _participants_of(slot: TimeSlot) -> frozenset[str]:
    if isinstance(slot, BusyBlock):
        return slot.participant_ids
    owner_id = getattr(slot, "owner_id", None)
    return frozenset({owner_id}) if owner_id else frozenset()


def _instance(slot: TimeSlot, start: datetime, end: datetime) -> ExpandedInstance:
    return ExpandedInstance(
        origin_id=slot.id,
        start=start,
        end=end,
        participant_ids=_participants_of(slot),
    )


def _candidate_dates(
    slot: TimeSlot, window_start: datetime, window_end: datetime
) -> Iterator[date]:
    first = max(window_start.astimezone(UTC).date(), slot.start_date)
    last = window_end.astimezone(UTC).date()
    if slot.rule.end_date is not None and slot.rule.end_date <= last:
        # end_date is exclusive
        last = slot.rule.end_date - _ONE_DAY
    current = first
    while current <= last:
        yield current
        current += _ONE_DAY


def _iter_occurrences(
    slot: TimeSlot, window_start: datetime, window_end: datetime
) -> Iterator[tuple[datetime, datetime]]:
    rule = slot.rule
    if not rule.is_recurring:
        if window_start <= slot.start < window_end:
            yield slot.start, slot.end
        return

    for candidate in _candidate_dates(slot, window_start, window_end):
        if rule.is_exception(candidate) or not rule.matches(candidate, slot.start_date):
            continue
        start, end = slot.occurrence_on(candidate)
        if window_start <= start < window_end:
            yield start, end


def expand(slot: TimeSlot, window_start: datetime, window_end: datetime) -> list[ExpandedInstance]:
    """Expand *slot* into the concrete instances starting in ``[window_start, window_end)``.

    A slot whose rule is malformed yields no instances; the problem is logged at
    WARNING and reported through ``expand_all``.

    Returns
    -------
    list[ExpandedInstance]
        Instances sorted by start instant.
    """
    check_window(window_start, window_end)
    reason = slot.rule.malformed_reason()
    if reason is not None:
        logger.warning("Skipping slot %s with malformed recurrence: %s", slot.id, reason)
        return []
    instances = [
        _instance(slot, start, end)
        for start, end in _iter_occurrences(slot, window_start, window_end)
    ]
    return sorted(instances, key=lambda instance: instance.start)


def malformed_warnings(slots: Iterable[TimeSlot]) -> list[DataQualityWarning]:
    """One warning per slot whose rule cannot generate instances."""
    warnings: list[DataQualityWarning] = []
    for slot in slots:
        reason = slot.rule.malformed_reason()
        if reason is not None:
            warnings.append(DataQualityWarning(origin_id=slot.id, message=reason))
    return warnings


@engine_span("expand_all")
def expand_all(
    slots: Iterable[TimeSlot], window_start: datetime, window_end: datetime
) -> ExpansionResult:
    """Expand many slots into one flat, ordered instance list.

    Instances are sorted by start instant, ties broken by origin id, so repeated
    calls with the same inputs return identical output.
    """
    check_window(window_start, window_end)
    slots = list(slots)
    instances: list[ExpandedInstance] = []
    for slot in slots:
        instances.extend(expand(slot, window_start, window_end))
    warnings = malformed_warnings(slots)

    instances.sort(key=lambda instance: (instance.start, instance.origin_id))
    logger.debug(
        "Expanded slots into %d instances (%d warnings) for %s..%s",
        len(instances),
        len(warnings),
        window_start.isoformat(),
        window_end.isoformat(),
    )
    return ExpansionResult(instances=instances, warnings=warnings)


def count_occurrences(slot: TimeSlot, window_start: datetime, window_end: datetime) -> int:
    """Number of instances *slot* produces inside the window."""
    return len(expand(slot, window_start, window_end))


def is_exception_date(slot: TimeSlot, when: date | datetime | str) -> bool:
    """True when *when* (truncated to its date) is one of the slot's exception dates."""
    return slot.rule.is_exception(as_date(when))


def next_occurrence(slot: TimeSlot, after: datetime) -> datetime | None:
    """Return the first occurrence of a recurring slot starting strictly after *after*.

    The search looks ahead at most ``NEXT_OCCURRENCE_WEEKS`` weeks for weekly
    rules and ``NEXT_OCCURRENCE_DAYS`` days for daily rules.  One-time slots,
    malformed rules and exhausted rules return ``None``.
    """
    if after.tzinfo is None:
        raise InvalidWindowError("next_occurrence requires a timezone-aware instant")
    if not slot.is_recurring or slot.rule.malformed_reason() is not None:
        return None

    horizon = timedelta(days=NEXT_OCCURRENCE_DAYS)
    if slot.rule.kind != "daily":
        horizon = timedelta(weeks=NEXT_OCCURRENCE_WEEKS)

    # Start at midnight so an occurrence later on the same day is still found.
    day_start = datetime.combine(after.date(), datetime.min.time(), tzinfo=after.tzinfo)
    for start, _ in _iter_occurrences(slot, day_start, after + horizon):
        if start > after:
            return start
    return None
