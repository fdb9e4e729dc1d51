"""Recurrence data model shared by the expander, overlap detector and aggregator.

This module defines:
- ``RecurrenceRule``: tagged union of ``NoRecurrence``, ``DailyRule``,
  ``WeeklySingleDayRule`` (legacy single-weekday form) and ``WeeklyMultiDayRule``
- ``TimeSlot`` and its two owners, ``AvailabilitySlot`` and ``BusyBlock``
- ``ExpandedInstance`` / ``AggregationBucket`` / ``FreeWindow``: transient records
  produced by the engine, never persisted

Weekdays are numbered 0=Sunday .. 6=Saturday everywhere in the engine.  Every
rule's ``end_date`` is exclusive: no instance is ever generated on it.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

SUNDAY = 0
SATURDAY = 6
ALL_WEEKDAYS: frozenset[int] = frozenset(range(SUNDAY, SATURDAY + 1))

Weekday = Annotated[int, Field(ge=SUNDAY, le=SATURDAY)]


def weekday_of(value: date) -> int:
    """Return the weekday of *value* numbered 0=Sunday .. 6=Saturday."""
    return (value.weekday() + 1) % 7


def week_start(value: date) -> date:
    """Return the Sunday that opens the week containing *value*."""
    return value - timedelta(days=weekday_of(value))


def to_calendar_date(value: Any) -> Any:
    """Truncate datetimes and ISO datetime strings to their date component.

    Aware datetimes are truncated in UTC. Anything else is returned unchanged so
    pydantic can report a proper validation error.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.date()
    if isinstance(value, str):
        return value.strip().split("T", 1)[0]
    return value


def as_date(value: date | datetime | str) -> date:
    """Coerce a date, datetime or ISO string to a calendar date."""
    truncated = to_calendar_date(value)
    if isinstance(truncated, str):
        return date.fromisoformat(truncated)
    return truncated


def isoformat_utc(value: datetime) -> str:
    """Format *value* as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RuleKind(StrEnum):
    """Discriminator values for ``RecurrenceRule``."""

    none = "none"
    daily = "daily"
    weekly_single_day = "weekly_single_day"
    weekly_multi_day = "weekly_multi_day"


# ---------------------------------------------------------------------------
# Recurrence rules
# ---------------------------------------------------------------------------


class _RuleBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    end_date: date | None = None
    exception_dates: frozenset[date] = frozenset()

    @field_validator("end_date", mode="before")
    @classmethod
    def _truncate_end_date(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return to_calendar_date(value)

    @field_validator("exception_dates", mode="before")
    @classmethod
    def _truncate_exception_dates(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, (str, date)):
            value = [value]
        return frozenset(to_calendar_date(item) for item in value)

    @property
    def is_recurring(self) -> bool:
        return True

    def malformed_reason(self) -> str | None:
        """Describe why this rule cannot generate instances, or ``None`` if it can."""
        return None

    def weekday_set(self) -> frozenset[int]:
        """Weekdays on which the rule can ever produce an instance."""
        return ALL_WEEKDAYS

    def matches(self, candidate: date, start_date: date) -> bool:
        """Day-membership test, independent of the active date range."""
        raise NotImplementedError

    def is_active_on(self, candidate: date, start_date: date) -> bool:
        """True when *candidate* lies in ``[start_date, end_date)``."""
        if candidate < start_date:
            return False
        return self.end_date is None or candidate < self.end_date

    def is_exception(self, candidate: date) -> bool:
        return candidate in self.exception_dates

    def occurs_on(self, candidate: date, start_date: date) -> bool:
        """Full test: active range, not an exception, and day-membership."""
        return (
            self.malformed_reason() is None
            and self.is_active_on(candidate, start_date)
            and not self.is_exception(candidate)
            and self.matches(candidate, start_date)
        )


class NoRecurrence(_RuleBase):
    """A single, non-repeating occurrence."""

    kind: Literal["none"] = "none"

    @property
    def is_recurring(self) -> bool:
        return False

    def matches(self, candidate: date, start_date: date) -> bool:
        return candidate == start_date


class DailyRule(_RuleBase):
    """Repeats every ``interval`` days counted from the slot's start date."""

    kind: Literal["daily"] = "daily"
    interval: int = Field(default=1, ge=1)

    def matches(self, candidate: date, start_date: date) -> bool:
        offset = (candidate - start_date).days
        return offset >= 0 and offset % self.interval == 0


class WeeklySingleDayRule(_RuleBase):
    """Legacy weekly form: every week on exactly one weekday."""

    kind: Literal["weekly_single_day"] = "weekly_single_day"
    weekday: Weekday | None = None

    def malformed_reason(self) -> str | None:
        if self.weekday is None:
            return "weekly rule has no weekday"
        return None

    def weekday_set(self) -> frozenset[int]:
        if self.weekday is None:
            return frozenset()
        return frozenset({self.weekday})

    def matches(self, candidate: date, start_date: date) -> bool:
        return self.weekday is not None and weekday_of(candidate) == self.weekday


class WeeklyMultiDayRule(_RuleBase):
    """Pattern form: every ``interval`` weeks on any of ``weekdays``.

    Week indices are counted from the (Sunday-started) week of the slot's start
    date; a candidate week is included when its index is a multiple of
    ``interval``.
    """

    kind: Literal["weekly_multi_day"] = "weekly_multi_day"
    weekdays: frozenset[Weekday] = frozenset()
    interval: int = Field(default=1, ge=1)

    def malformed_reason(self) -> str | None:
        if not self.weekdays:
            return "weekly pattern has an empty weekday set"
        return None

    def weekday_set(self) -> frozenset[int]:
        return frozenset(self.weekdays)

    def matches(self, candidate: date, start_date: date) -> bool:
        if weekday_of(candidate) not in self.weekdays:
            return False
        week_index = (week_start(candidate) - week_start(start_date)).days // 7
        return week_index % self.interval == 0


RecurrenceRule = Annotated[
    NoRecurrence | DailyRule | WeeklySingleDayRule | WeeklyMultiDayRule,
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Slots
# ---------------------------------------------------------------------------


class TimeSlot(BaseModel):
    """A (possibly recurring) time slot.

    ``start``/``end`` define the template stamped onto every generated
    instance: the time of day of ``start`` and the duration ``end - start``.
    ``start.date()`` is the rule's implicit start date.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    start: AwareDatetime
    end: AwareDatetime
    rule: RecurrenceRule = Field(default_factory=NoRecurrence)

    @field_validator("start", "end")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return value.astimezone(UTC)

    @model_validator(mode="after")
    def _validate_bounds(self) -> TimeSlot:
        if self.end <= self.start:
            raise ValueError("End time must be after start time")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.rule.is_recurring

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def time_of_day(self) -> time:
        return self.start.timetz()

    def occurrence_on(self, day: date) -> tuple[datetime, datetime]:
        """Stamp the slot template onto *day*, without any membership check."""
        start = datetime.combine(day, self.start.timetz())
        return start, start + self.duration


class AvailabilitySlot(TimeSlot):
    """A time slot during which exactly one participant is free."""

    owner_id: str = Field(min_length=1)


class BusyBlock(TimeSlot):
    """An event occurrence that makes its participants busy."""

    participant_ids: frozenset[str] = frozenset()
    title: str | None = None


class Participant(BaseModel):
    """One participant's availability, as supplied to the aggregator."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(min_length=1)
    availability: tuple[AvailabilitySlot, ...] = ()
    highlighted: bool = False


# ---------------------------------------------------------------------------
# Engine output
# ---------------------------------------------------------------------------


class ExpandedInstance(BaseModel):
    """A concrete, non-recurring occurrence of a slot."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    origin_id: str
    start: AwareDatetime
    end: AwareDatetime
    participant_ids: frozenset[str] = frozenset()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> str:
        return f"{self.origin_id}-{isoformat_utc(self.start)}"

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start


class AggregationBucket(BaseModel):
    """A fixed-width half-open interval ``[start, end)`` with the participants free in it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: AwareDatetime
    end: AwareDatetime
    available_participant_ids: frozenset[str]
    highlighted: bool = False
    level: int = Field(ge=0, le=4)
    total_participants: int = Field(ge=1)

    @property
    def available_count(self) -> int:
        return len(self.available_participant_ids)

    @property
    def ratio(self) -> float:
        return self.available_count / self.total_participants

    @property
    def display_text(self) -> str:
        if self.total_participants > 5 and self.available_count == self.total_participants:
            return "All"
        return str(self.available_count)


class FreeWindow(BaseModel):
    """A merged run of contiguous buckets in which the same participants are free."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: AwareDatetime
    end: AwareDatetime
    participant_ids: frozenset[str]

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


class DataQualityWarning(BaseModel):
    """A non-fatal input problem, e.g. a weekly rule with no weekday."""

    model_config = ConfigDict(frozen=True)

    origin_id: str
    message: str
