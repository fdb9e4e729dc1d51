"""Recurrence expansion, overlap detection and availability aggregation."""

from event_matcher.recurrence.aggregator import (
    AggregationResult,
    aggregate,
    busy_by_participant,
    find_common_free_time,
    heat_level,
    merge_bucket_maps,
    participant_buckets,
)
from event_matcher.recurrence.errors import (
    InvalidWindowError,
    RecordError,
    RecurrenceError,
    SlotConflictError,
    SlotValidationError,
)
from event_matcher.recurrence.expander import (
    ExpansionResult,
    count_occurrences,
    expand,
    expand_all,
    is_exception_date,
    next_occurrence,
)
from event_matcher.recurrence.ingest import (
    availability_from_record,
    busy_block_from_record,
    rule_from_record,
    rule_to_record,
)
from event_matcher.recurrence.models import (
    AggregationBucket,
    AvailabilitySlot,
    BusyBlock,
    DailyRule,
    DataQualityWarning,
    ExpandedInstance,
    FreeWindow,
    NoRecurrence,
    Participant,
    RecurrenceRule,
    TimeSlot,
    WeeklyMultiDayRule,
    WeeklySingleDayRule,
    weekday_of,
)
from event_matcher.recurrence.overlap import find_conflict, may_overlap
from event_matcher.recurrence.series import (
    add_exception_date,
    make_recurring,
    set_end_date,
    split_series,
)
from event_matcher.recurrence.validation import (
    RecurringPatternEntry,
    ensure_no_conflict,
    validate_recurring_pattern,
    validate_slot,
    validate_time_slot,
)

__all__ = [
    "AggregationBucket",
    "AggregationResult",
    "AvailabilitySlot",
    "BusyBlock",
    "DailyRule",
    "DataQualityWarning",
    "ExpandedInstance",
    "ExpansionResult",
    "FreeWindow",
    "InvalidWindowError",
    "NoRecurrence",
    "Participant",
    "RecordError",
    "RecurrenceError",
    "RecurrenceRule",
    "RecurringPatternEntry",
    "SlotConflictError",
    "SlotValidationError",
    "TimeSlot",
    "WeeklyMultiDayRule",
    "WeeklySingleDayRule",
    "add_exception_date",
    "aggregate",
    "availability_from_record",
    "busy_block_from_record",
    "busy_by_participant",
    "count_occurrences",
    "ensure_no_conflict",
    "expand",
    "expand_all",
    "find_common_free_time",
    "find_conflict",
    "heat_level",
    "is_exception_date",
    "make_recurring",
    "may_overlap",
    "merge_bucket_maps",
    "next_occurrence",
    "participant_buckets",
    "rule_from_record",
    "rule_to_record",
    "set_end_date",
    "split_series",
    "validate_recurring_pattern",
    "validate_slot",
    "validate_time_slot",
    "weekday_of",
]
