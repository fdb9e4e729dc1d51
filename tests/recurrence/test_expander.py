"""Tests for instance expansion."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from event_matcher.recurrence.errors import InvalidWindowError
from event_matcher.recurrence.expander import (
    count_occurrences,
    expand,
    expand_all,
    is_exception_date,
    next_occurrence,
)
from event_matcher.recurrence.models import (
    DailyRule,
    WeeklyMultiDayRule,
    WeeklySingleDayRule,
)

pytestmark = pytest.mark.unit

JAN_START = datetime(2025, 1, 1, tzinfo=UTC)
JAN_END = datetime(2025, 1, 31, 23, 59, 59, tzinfo=UTC)
MONDAY_9AM = datetime(2025, 1, 6, 9, tzinfo=UTC)
MONDAY_10AM = datetime(2025, 1, 6, 10, tzinfo=UTC)


def _dates(instances) -> list[date]:
    return [instance.start.date() for instance in instances]


@pytest.fixture
def monday_slot(make_slot):
    """Weekly Monday 09:00-10:00 starting 2025-01-06."""

    def _make(**rule_fields):
        return make_slot(MONDAY_9AM, MONDAY_10AM, WeeklySingleDayRule(weekday=1, **rule_fields))

    return _make


# ---------------------------------------------------------------------------
# January 2025 weekly scenarios
# ---------------------------------------------------------------------------


class TestWeeklyMondayScenarios:
    def test_every_monday_in_january(self, monday_slot):
        instances = expand(monday_slot(), JAN_START, JAN_END)
        assert _dates(instances) == [
            date(2025, 1, 6),
            date(2025, 1, 13),
            date(2025, 1, 20),
            date(2025, 1, 27),
        ]
        for instance in instances:
            assert (instance.start.hour, instance.start.minute) == (9, 0)
            assert instance.end - instance.start == timedelta(hours=1)

    def test_end_date_is_exclusive(self, monday_slot):
        instances = expand(monday_slot(end_date=date(2025, 1, 20)), JAN_START, JAN_END)
        assert _dates(instances) == [date(2025, 1, 6), date(2025, 1, 13)]

    def test_exception_date_suppresses_one_instance(self, monday_slot):
        instances = expand(monday_slot(exception_dates=["2025-01-13"]), JAN_START, JAN_END)
        assert _dates(instances) == [date(2025, 1, 6), date(2025, 1, 20), date(2025, 1, 27)]

    def test_instance_ids_and_owner(self, monday_slot):
        first = expand(monday_slot(), JAN_START, JAN_END)[0]
        assert first.origin_id == "slot-1"
        assert first.id == "slot-1-2025-01-06T09:00:00.000Z"
        assert first.participant_ids == frozenset({"alice"})


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestOneTimeSlots:
    def test_start_inside_window_returns_slot(self, make_slot):
        slot = make_slot(MONDAY_9AM, MONDAY_10AM)
        [instance] = expand(slot, JAN_START, JAN_END)
        assert (instance.start, instance.end) == (slot.start, slot.end)
        assert instance.id == "slot-1-2025-01-06T09:00:00.000Z"

    def test_start_outside_window_returns_nothing(self, make_slot):
        slot = make_slot(MONDAY_9AM, MONDAY_10AM)
        assert expand(slot, MONDAY_10AM, JAN_END) == []

    def test_window_end_is_exclusive(self, make_slot):
        slot = make_slot(MONDAY_9AM, MONDAY_10AM)
        assert expand(slot, JAN_START, MONDAY_9AM) == []

    def test_slot_started_before_window_is_not_clipped_in(self, make_slot):
        slot = make_slot(MONDAY_9AM, MONDAY_10AM)
        assert expand(slot, MONDAY_9AM + timedelta(minutes=30), JAN_END) == []


class TestWeeklyProperties:
    @pytest.mark.parametrize("weeks", [1, 3, 6, 10])
    def test_k_weeks_yield_k_instances_seven_days_apart(self, make_slot, weeks: int):
        wednesday = datetime(2025, 1, 1, 14, tzinfo=UTC)
        slot = make_slot(wednesday, wednesday + timedelta(hours=1), WeeklySingleDayRule(weekday=3))
        window_start = datetime(2025, 1, 5, tzinfo=UTC)
        instances = expand(slot, window_start, window_start + timedelta(weeks=weeks))
        assert len(instances) == weeks
        gaps = {b.start - a.start for a, b in zip(instances, instances[1:], strict=False)}
        assert gaps <= {timedelta(days=7)}

    def test_end_date_never_produces_instance_on_that_date(self, make_slot):
        start = datetime(2025, 1, 1, 9, tzinfo=UTC)
        slot = make_slot(start, start + timedelta(hours=1), DailyRule(end_date=date(2025, 1, 10)))
        dates = _dates(expand(slot, JAN_START, JAN_END))
        assert date(2025, 1, 10) not in dates
        assert dates[-1] == date(2025, 1, 9)

    def test_exception_removes_exactly_that_instance(self, monday_slot):
        before = expand(monday_slot(), JAN_START, JAN_END)
        after = expand(monday_slot(exception_dates=[date(2025, 1, 20)]), JAN_START, JAN_END)
        assert [i for i in before if i.start.date() != date(2025, 1, 20)] == after

    def test_expansion_is_idempotent(self, monday_slot):
        slot = monday_slot(exception_dates=[date(2025, 1, 13)])
        assert expand(slot, JAN_START, JAN_END) == expand(slot, JAN_START, JAN_END)


class TestRuleVariants:
    def test_multi_day_every_other_week(self, make_slot):
        rule = WeeklyMultiDayRule(weekdays={1, 3}, interval=2)
        slot = make_slot(MONDAY_9AM, MONDAY_10AM, rule)
        assert _dates(expand(slot, JAN_START, JAN_END)) == [
            date(2025, 1, 6),
            date(2025, 1, 8),
            date(2025, 1, 20),
            date(2025, 1, 22),
        ]

    def test_daily_interval(self, make_slot):
        start = datetime(2025, 1, 1, 9, tzinfo=UTC)
        slot = make_slot(start, start + timedelta(minutes=30), DailyRule(interval=2))
        instances = expand(slot, JAN_START, datetime(2025, 1, 8, tzinfo=UTC))
        assert _dates(instances) == [
            date(2025, 1, 1),
            date(2025, 1, 3),
            date(2025, 1, 5),
            date(2025, 1, 7),
        ]

    def test_window_bounds_cut_mid_day(self, make_slot):
        start = datetime(2025, 1, 1, 9, tzinfo=UTC)
        slot = make_slot(start, start + timedelta(minutes=30), DailyRule())
        instances = expand(
            slot, datetime(2025, 1, 3, 10, tzinfo=UTC), datetime(2025, 1, 5, 10, tzinfo=UTC)
        )
        assert _dates(instances) == [date(2025, 1, 4), date(2025, 1, 5)]

    def test_window_in_other_timezone(self, monday_slot):
        plus_five = timezone(timedelta(hours=5))
        instances = expand(
            monday_slot(),
            datetime(2025, 1, 6, 13, tzinfo=plus_five),
            datetime(2025, 1, 6, 15, tzinfo=plus_five),
        )
        assert [instance.start for instance in instances] == [MONDAY_9AM]

    def test_series_starting_after_window(self, monday_slot):
        assert expand(monday_slot(), JAN_START, datetime(2025, 1, 5, tzinfo=UTC)) == []

    def test_overnight_slot_keeps_its_duration(self, make_slot):
        start = datetime(2025, 1, 1, 23, tzinfo=UTC)
        slot = make_slot(start, start + timedelta(hours=2), DailyRule())
        instances = expand(slot, JAN_START, datetime(2025, 1, 3, tzinfo=UTC))
        assert [instance.end for instance in instances] == [
            datetime(2025, 1, 2, 1, tzinfo=UTC),
            datetime(2025, 1, 3, 1, tzinfo=UTC),
        ]

    def test_busy_block_carries_participants(self, make_busy):
        block = make_busy(MONDAY_9AM, MONDAY_10AM, {"alice", "bob"}, DailyRule())
        instances = expand(block, JAN_START, datetime(2025, 1, 8, tzinfo=UTC))
        assert len(instances) == 2
        assert all(i.participant_ids == frozenset({"alice", "bob"}) for i in instances)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


class TestMalformedAndInvalidInput:
    def test_malformed_weekly_rule_yields_nothing_and_warns(self, make_slot, caplog):
        slot = make_slot(MONDAY_9AM, MONDAY_10AM, WeeklySingleDayRule())
        with caplog.at_level(logging.WARNING, logger="event_matcher.recurrence.expander"):
            assert expand(slot, JAN_START, JAN_END) == []
        assert "malformed recurrence" in caplog.text

    def test_expand_all_reports_warnings(self, make_slot, monday_slot):
        broken = make_slot(MONDAY_9AM, MONDAY_10AM, WeeklyMultiDayRule(), slot_id="broken")
        result = expand_all([monday_slot(), broken], JAN_START, JAN_END)
        assert len(result.instances) == 4
        assert [warning.origin_id for warning in result.warnings] == ["broken"]

    def test_inverted_window_rejected(self, monday_slot):
        with pytest.raises(InvalidWindowError):
            expand(monday_slot(), JAN_END, JAN_START)

    def test_invalid_window_is_a_value_error(self, monday_slot):
        with pytest.raises(ValueError):
            expand_all([monday_slot()], JAN_END, JAN_START)

    def test_naive_window_rejected(self, monday_slot):
        with pytest.raises(InvalidWindowError, match="timezone-aware"):
            expand(monday_slot(), datetime(2025, 1, 1), datetime(2025, 2, 1))

    def test_empty_window_yields_nothing(self, monday_slot):
        assert expand(monday_slot(), MONDAY_9AM, MONDAY_9AM) == []


# ---------------------------------------------------------------------------
# expand_all
# ---------------------------------------------------------------------------


class TestExpandAll:
    def test_sorted_by_start_then_origin(self, make_slot):
        slots = [
            make_slot(MONDAY_9AM, MONDAY_10AM, DailyRule(), slot_id="b"),
            make_slot(MONDAY_9AM, MONDAY_10AM, DailyRule(), slot_id="a"),
            make_slot(MONDAY_9AM - timedelta(hours=1), MONDAY_9AM, slot_id="c"),
        ]
        result = expand_all(slots, JAN_START, datetime(2025, 1, 8, tzinfo=UTC))
        assert [i.origin_id for i in result.instances] == ["c", "a", "b", "a", "b"]

    def test_records_span(self, monday_slot, otel_exporter):
        expand_all([monday_slot()], JAN_START, JAN_END)
        names = [span.name for span in otel_exporter.get_finished_spans()]
        assert "event_matcher.expand_all" in names


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


class TestQueryHelpers:
    def test_count_occurrences(self, monday_slot):
        assert count_occurrences(monday_slot(), JAN_START, JAN_END) == 4

    def test_is_exception_date_truncates_input(self, monday_slot):
        slot = monday_slot(exception_dates=[date(2025, 1, 13)])
        assert is_exception_date(slot, "2025-01-13T00:00:00Z")
        assert is_exception_date(slot, datetime(2025, 1, 13, 9, tzinfo=UTC))
        assert not is_exception_date(slot, date(2025, 1, 20))


class TestNextOccurrence:
    def test_strictly_after(self, monday_slot):
        assert next_occurrence(monday_slot(), MONDAY_9AM) == datetime(2025, 1, 13, 9, tzinfo=UTC)

    def test_later_the_same_day(self, monday_slot):
        after = datetime(2025, 1, 6, 8, tzinfo=UTC)
        assert next_occurrence(monday_slot(), after) == MONDAY_9AM

    def test_skips_exceptions(self, monday_slot):
        slot = monday_slot(exception_dates=[date(2025, 1, 13)])
        assert next_occurrence(slot, MONDAY_9AM) == datetime(2025, 1, 20, 9, tzinfo=UTC)

    def test_exhausted_series(self, monday_slot):
        slot = monday_slot(end_date=date(2025, 1, 20))
        assert next_occurrence(slot, datetime(2025, 1, 13, 9, tzinfo=UTC)) is None

    def test_daily(self, make_slot):
        slot = make_slot(MONDAY_9AM, MONDAY_10AM, DailyRule())
        assert next_occurrence(slot, MONDAY_10AM) == datetime(2025, 1, 7, 9, tzinfo=UTC)

    def test_one_time_and_malformed_return_none(self, make_slot):
        assert next_occurrence(make_slot(MONDAY_9AM, MONDAY_10AM), JAN_START) is None
        broken = make_slot(MONDAY_9AM, MONDAY_10AM, WeeklySingleDayRule())
        assert next_occurrence(broken, JAN_START) is None

    def test_naive_instant_rejected(self, monday_slot):
        with pytest.raises(InvalidWindowError):
            next_occurrence(monday_slot(), datetime(2025, 1, 6))
