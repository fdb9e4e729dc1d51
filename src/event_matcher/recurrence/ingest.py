"""Translate raw persistence records into engine slots.

This is the only place that knows about the two stored recurrence shapes:

- the legacy availability form: ``is_recurring`` + ``day_of_week`` (a null
  ``day_of_week`` on a recurring row means "every day")
- the event pattern form: ``recurrence_pattern`` JSON such as
  ``{"frequency": "weekly", "interval": 2, "days_of_week": [1, 3]}``

Both become a single ``RecurrenceRule`` so no other module branches on the
storage shape.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import TypeAdapter, ValidationError

from event_matcher.recurrence.errors import RecordError
from event_matcher.recurrence.models import (
    AvailabilitySlot,
    BusyBlock,
    DailyRule,
    NoRecurrence,
    RecurrenceRule,
    WeeklyMultiDayRule,
    WeeklySingleDayRule,
)

logger = logging.getLogger(__name__)

_RULE_ADAPTER: TypeAdapter[Any] = TypeAdapter(RecurrenceRule)

_PATTERN_FREQUENCY_KEYS = ("frequency", "type", "freq")
_PATTERN_WEEKDAY_KEYS = ("days_of_week", "daysOfWeek", "weekdays")


def _first_present(mapping: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def _record_id(record: Mapping[str, Any]) -> str:
    record_id = record.get("id")
    if record_id is None or not str(record_id).strip():
        raise RecordError("Record is missing an id")
    return str(record_id)


def _pattern_rule(record: Mapping[str, Any], pattern: Mapping[str, Any]) -> dict[str, Any]:
    frequency = _first_present(pattern, _PATTERN_FREQUENCY_KEYS)
    normalized = str(frequency).strip().lower() if frequency is not None else "weekly"
    interval = pattern.get("interval") or 1

    if normalized == "daily":
        return {"kind": "daily", "interval": interval}
    if normalized == "weekly":
        weekdays = _first_present(pattern, _PATTERN_WEEKDAY_KEYS)
        if weekdays is None and record.get("day_of_week") is not None:
            weekdays = [record["day_of_week"]]
        return {"kind": "weekly_multi_day", "weekdays": weekdays or [], "interval": interval}
    raise RecordError(
        f"Unsupported recurrence frequency {frequency!r} in record {record.get('id')!r}"
    )


def rule_from_record(record: Mapping[str, Any]) -> RecurrenceRule:
    """Build the unified rule for a raw record.

    Raises
    ------
    RecordError
        If the pattern frequency is unknown or a field has an invalid value.
    """
    if not record.get("is_recurring"):
        return NoRecurrence()

    pattern = record.get("recurrence_pattern")
    if isinstance(pattern, Mapping) and pattern:
        payload = _pattern_rule(record, pattern)
    elif record.get("day_of_week") is not None:
        payload = {"kind": "weekly_single_day", "weekday": record["day_of_week"]}
    else:
        payload = {"kind": "daily"}

    payload["end_date"] = record.get("recurrence_end_date")
    payload["exception_dates"] = record.get("exception_dates")
    try:
        rule = _RULE_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise RecordError(f"Invalid recurrence in record {record.get('id')!r}: {exc}") from exc

    reason = rule.malformed_reason()
    if reason is not None:
        logger.warning("Record %s has a malformed recurrence: %s", record.get("id"), reason)
    return rule


def _participant_ids(record: Mapping[str, Any]) -> frozenset[str]:
    explicit = record.get("participant_ids")
    if explicit is not None:
        return frozenset(str(pid) for pid in explicit)
    participants = record.get("participants") or []
    ids: set[str] = set()
    for participant in participants:
        if isinstance(participant, Mapping):
            user_id = participant.get("user_id")
            if user_id is not None:
                ids.add(str(user_id))
        elif participant is not None:
            ids.add(str(participant))
    return frozenset(ids)


def availability_from_record(record: Mapping[str, Any]) -> AvailabilitySlot:
    """Translate an availability row into an ``AvailabilitySlot``."""
    rule = rule_from_record(record)
    try:
        return AvailabilitySlot(
            id=_record_id(record),
            start=record.get("start_time"),
            end=record.get("end_time"),
            rule=rule,
            owner_id=str(record.get("user_id") or ""),
        )
    except ValidationError as exc:
        raise RecordError(f"Invalid availability record {record.get('id')!r}: {exc}") from exc


def busy_block_from_record(record: Mapping[str, Any]) -> BusyBlock:
    """Translate an event row (with its participants) into a ``BusyBlock``."""
    rule = rule_from_record(record)
    try:
        return BusyBlock(
            id=_record_id(record),
            start=record.get("start_time"),
            end=record.get("end_time"),
            rule=rule,
            participant_ids=_participant_ids(record),
            title=record.get("title"),
        )
    except ValidationError as exc:
        raise RecordError(f"Invalid event record {record.get('id')!r}: {exc}") from exc


def rule_to_record(rule: RecurrenceRule) -> dict[str, Any]:
    """Inverse of ``rule_from_record`` for the pattern form, used when persisting edits."""
    record: dict[str, Any] = {
        "is_recurring": rule.is_recurring,
        "day_of_week": None,
        "recurrence_pattern": None,
        "recurrence_end_date": rule.end_date.isoformat() if rule.end_date else None,
        "exception_dates": sorted(day.isoformat() for day in rule.exception_dates),
    }
    if isinstance(rule, WeeklySingleDayRule):
        record["day_of_week"] = rule.weekday
    elif isinstance(rule, WeeklyMultiDayRule):
        record["recurrence_pattern"] = {
            "frequency": "weekly",
            "interval": rule.interval,
            "days_of_week": sorted(rule.weekdays),
        }
    elif isinstance(rule, DailyRule) and rule.interval != 1:
        record["recurrence_pattern"] = {"frequency": "daily", "interval": rule.interval}
    return record
