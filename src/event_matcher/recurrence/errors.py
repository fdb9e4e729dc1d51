"""Error hierarchy for the recurrence & availability engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from event_matcher.recurrence.models import TimeSlot


class RecurrenceError(Exception):
    """Base error raised by the recurrence engine."""


class InvalidWindowError(RecurrenceError, ValueError):
    """Raised when a query window is inverted or has naive bounds."""


class RecordError(RecurrenceError, ValueError):
    """Raised when a raw slot/event record cannot be translated into a slot."""


class SlotValidationError(RecurrenceError, ValueError):
    """Raised when a slot violates an availability business rule."""


class SlotConflictError(RecurrenceError):
    """Raised when a new or edited slot collides with an existing one."""

    def __init__(self, conflicting_slot: TimeSlot, message: str | None = None) -> None:
        self.conflicting_slot = conflicting_slot
        self.message = message or "This time slot overlaps with an existing availability"
        super().__init__(f"{self.message} (conflicts with {conflicting_slot.id})")
