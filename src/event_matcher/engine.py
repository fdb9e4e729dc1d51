"""AvailabilityEngine: the recurrence functions bound to one EngineConfig.

Callers that work with a fixed bucket width, alignment grid and overlap
tolerance construct one engine and call it, instead of threading those
settings through every call.  The engine holds no other state.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime

from opentelemetry import trace

from event_matcher.config import EngineConfig
from event_matcher.core.logging import configure_logging
from event_matcher.core.telemetry import init_telemetry
from event_matcher.recurrence import aggregator, expander, overlap, validation
from event_matcher.recurrence.aggregator import AggregationResult
from event_matcher.recurrence.expander import ExpansionResult
from event_matcher.recurrence.models import (
    BusyBlock,
    ExpandedInstance,
    FreeWindow,
    Participant,
    TimeSlot,
)
from event_matcher.recurrence.validation import RecurringPatternEntry

logger = logging.getLogger(__name__)


class AvailabilityEngine:
    """Recurrence expansion, overlap checks and aggregation under one config."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def configure_logging(self) -> logging.Logger:
        """Install the structured logging described by ``config.logging``."""
        settings = self.config.logging
        library_logger = configure_logging(
            level=settings.level,
            fmt=settings.format,
            log_file=settings.log_file,
            engine_name=self.config.name,
        )
        logger.debug("Logging configured for engine %s", self.config.name)
        return library_logger

    def configure_telemetry(self) -> trace.Tracer:
        """Export engine spans over OTLP when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set."""
        return init_telemetry(self.config.name)

    @property
    def _validation_kwargs(self) -> dict[str, int]:
        return {
            "alignment_minutes": self.config.slot_alignment_minutes,
            "min_duration_minutes": self.config.min_slot_minutes,
        }

    # -- expansion ---------------------------------------------------------

    def expand(
        self, slot: TimeSlot, window_start: datetime, window_end: datetime
    ) -> list[ExpandedInstance]:
        return expander.expand(slot, window_start, window_end)

    def expand_all(
        self, slots: Iterable[TimeSlot], window_start: datetime, window_end: datetime
    ) -> ExpansionResult:
        return expander.expand_all(slots, window_start, window_end)

    def next_occurrence(self, slot: TimeSlot, after: datetime) -> datetime | None:
        return expander.next_occurrence(slot, after)

    # -- overlap -----------------------------------------------------------

    def may_overlap(self, a: TimeSlot, b: TimeSlot) -> bool:
        return overlap.may_overlap(
            a, b, exact_horizon_days=self.config.exact_overlap_horizon_days
        )

    def find_conflict(
        self, new_slot: TimeSlot, existing: Iterable[TimeSlot], *, exclude_id: str | None = None
    ) -> TimeSlot | None:
        return overlap.find_conflict(
            new_slot,
            existing,
            exclude_id=exclude_id,
            exact_horizon_days=self.config.exact_overlap_horizon_days,
        )

    # -- validation --------------------------------------------------------

    def validate_slot(self, slot: TimeSlot) -> None:
        """Check alignment and minimum length; raises ``SlotValidationError``."""
        validation.validate_slot(slot, **self._validation_kwargs)

    def validate_recurring_pattern(self, entries: Iterable[RecurringPatternEntry]) -> list[str]:
        return validation.validate_recurring_pattern(entries, **self._validation_kwargs)

    def ensure_no_conflict(
        self, new_slot: TimeSlot, existing: Iterable[TimeSlot], *, exclude_id: str | None = None
    ) -> None:
        """Raise ``SlotConflictError`` if *new_slot* may overlap an existing slot."""
        validation.ensure_no_conflict(
            new_slot,
            existing,
            exclude_id=exclude_id,
            exact_horizon_days=self.config.exact_overlap_horizon_days,
        )

    # -- aggregation -------------------------------------------------------

    def aggregate(
        self,
        participants: Sequence[Participant],
        busy: Iterable[BusyBlock],
        window_start: datetime,
        window_end: datetime,
        *,
        highlighted_ids: Iterable[str] | None = None,
    ) -> AggregationResult:
        return aggregator.aggregate(
            participants,
            busy,
            window_start,
            window_end,
            highlighted_ids=highlighted_ids,
            bucket_minutes=self.config.bucket_minutes,
        )

    def find_common_free_time(
        self,
        participants: Sequence[Participant],
        busy: Iterable[BusyBlock],
        window_start: datetime,
        window_end: datetime,
        *,
        min_participants: int | None = None,
    ) -> list[FreeWindow]:
        """Aggregate the window and return the merged common free windows."""
        result = self.aggregate(participants, busy, window_start, window_end)
        return aggregator.find_common_free_time(result, min_participants=min_participants)
