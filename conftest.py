"""Root conftest: shared slot factories and tracing fixtures for all tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any

import pytest
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from event_matcher.recurrence.models import (
    AvailabilitySlot,
    BusyBlock,
    NoRecurrence,
    Participant,
    RecurrenceRule,
)


def _reset_otel_global_state() -> None:
    """Fully reset the OpenTelemetry global tracer provider state."""
    trace._TRACER_PROVIDER_SET_ONCE = trace.Once()
    trace._TRACER_PROVIDER = None


@pytest.fixture
def otel_exporter() -> Iterator[InMemorySpanExporter]:
    """Install an in-memory TracerProvider for one test, then tear it down."""
    _reset_otel_global_state()
    exporter = InMemorySpanExporter()
    provider = TracerProvider(resource=Resource.create({"service.name": "event-matcher-test"}))
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    yield exporter
    provider.shutdown()
    _reset_otel_global_state()


@pytest.fixture
def make_slot() -> Callable[..., AvailabilitySlot]:
    """Factory for availability slots owned by ``alice`` unless told otherwise."""

    def _make(
        start: datetime,
        end: datetime,
        rule: RecurrenceRule | None = None,
        *,
        slot_id: str = "slot-1",
        owner_id: str = "alice",
    ) -> AvailabilitySlot:
        return AvailabilitySlot(
            id=slot_id,
            start=start,
            end=end,
            rule=rule or NoRecurrence(),
            owner_id=owner_id,
        )

    return _make


@pytest.fixture
def make_busy() -> Callable[..., BusyBlock]:
    def _make(
        start: datetime,
        end: datetime,
        participant_ids: frozenset[str] | set[str] = frozenset(),
        rule: RecurrenceRule | None = None,
        *,
        block_id: str = "event-1",
        **extra: Any,
    ) -> BusyBlock:
        return BusyBlock(
            id=block_id,
            start=start,
            end=end,
            rule=rule or NoRecurrence(),
            participant_ids=frozenset(participant_ids),
            **extra,
        )

    return _make


@pytest.fixture
def make_participant(make_slot) -> Callable[..., Participant]:
    """Factory for a participant holding one slot per ``(start, end)`` pair."""

    def _make(
        participant_id: str,
        *spans: tuple[datetime, datetime],
        highlighted: bool = False,
    ) -> Participant:
        slots = tuple(
            make_slot(start, end, slot_id=f"{participant_id}-{index}", owner_id=participant_id)
            for index, (start, end) in enumerate(spans)
        )
        return Participant(id=participant_id, availability=slots, highlighted=highlighted)

    return _make

