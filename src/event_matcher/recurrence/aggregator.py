"""Multi-participant availability aggregation into fixed-width buckets.

Each participant independently produces a partial bucket map (bucket start →
participant ids + highlight flag).  Partials are merged with a commutative,
associative combine, so they can be computed in any order or in parallel.
Busy blocks are expanded whole-occurrence into a separate overlay and never
counted as availability.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from functools import reduce

from event_matcher.core.telemetry import engine_span
from event_matcher.recurrence.expander import check_window, expand, expand_all, malformed_warnings
from event_matcher.recurrence.models import (
    AggregationBucket,
    BusyBlock,
    DataQualityWarning,
    ExpandedInstance,
    FreeWindow,
    Participant,
)

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_MINUTES = 15
MAX_LEVEL = 4

# Explicit level tables for small groups: total participants -> {count: level}.
# The extremes (one person / everyone) always map to 0 and 4.
_SMALL_GROUP_LEVELS: dict[int, dict[int, int]] = {
    2: {1: 0, 2: 4},
    3: {1: 0, 2: 2, 3: 4},
    4: {1: 0, 2: 1, 3: 3, 4: 4},
    5: {1: 0, 2: 1, 3: 2, 4: 3, 5: 4},
}

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class BucketPartial:
    """Participants present in one bucket, before levels are assigned."""

    participant_ids: frozenset[str]
    highlighted: bool = False

    def merge(self, other: BucketPartial) -> BucketPartial:
        return BucketPartial(
            participant_ids=self.participant_ids | other.participant_ids,
            highlighted=self.highlighted or other.highlighted,
        )


BucketMap = dict[datetime, BucketPartial]


@dataclass(frozen=True)
class AggregationResult:
    """Buckets sorted by start, plus the busy overlay and data-quality warnings."""

    buckets: list[AggregationBucket] = field(default_factory=list)
    expanded_busy: list[ExpandedInstance] = field(default_factory=list)
    warnings: list[DataQualityWarning] = field(default_factory=list)
    total_participants: int = 0


def heat_level(count: int, total: int) -> int:
    """Quantize *count* free participants out of *total* into a level 0..4.

    ``count == 1`` is always level 0 and ``count == total`` (for more than one
    participant) always level 4, whatever the group size.  Groups of two to five
    use an explicit table; larger groups spread the intermediate counts over
    levels 1..3.

    Raises
    ------
    ValueError
        If ``total < 1`` or ``count`` is outside ``1..total``.
    """
    if total < 1:
        raise ValueError(f"total participants must be positive, got {total}")
    if not 1 <= count <= total:
        raise ValueError(f"count must be within 1..{total}, got {count}")

    if count == 1:
        return 0
    if count == total:
        return MAX_LEVEL
    table = _SMALL_GROUP_LEVELS.get(total)
    if table is not None:
        return table[count]
    scaled = math.floor((count - 1) / (total - 1) * MAX_LEVEL)
    return min(MAX_LEVEL - 1, max(1, scaled))


def _align_up(value: datetime, step: timedelta) -> datetime:
    remainder = (value - _EPOCH) % step
    if not remainder:
        return value
    return value + (step - remainder)


def _instance_steps(
    instance: ExpandedInstance,
    window_start: datetime,
    window_end: datetime,
    step: timedelta,
) -> Iterable[datetime]:
    current = _align_up(max(instance.start, window_start), step)
    while current + step <= instance.end and current < window_end:
        yield current
        current += step


def merge_bucket_maps(
    left: Mapping[datetime, BucketPartial], right: Mapping[datetime, BucketPartial]
) -> BucketMap:
    """Combine two partial bucket maps (set union of ids, OR of highlight)."""
    merged: BucketMap = dict(left)
    for start, partial in right.items():
        existing = merged.get(start)
        merged[start] = partial if existing is None else existing.merge(partial)
    return merged


def participant_buckets(
    participant: Participant,
    window_start: datetime,
    window_end: datetime,
    *,
    highlighted: bool | None = None,
    bucket_minutes: int = DEFAULT_BUCKET_MINUTES,
) -> BucketMap:
    """Build one participant's partial bucket map over the window.

    Every availability slot is expanded, and each bucket ``[s, s + bucket)``
    lying fully inside an instance (with ``s`` inside the window) records the
    participant.  Bucket starts are aligned to the bucket grid.
    """
    step = timedelta(minutes=bucket_minutes)
    flag = participant.highlighted if highlighted is None else highlighted
    partial = BucketPartial(participant_ids=frozenset({participant.id}), highlighted=flag)
    buckets: BucketMap = {}
    for slot in participant.availability:
        for instance in expand(slot, window_start, window_end):
            for start in _instance_steps(instance, window_start, window_end, step):
                buckets[start] = partial
    return buckets


def _to_buckets(
    merged: Mapping[datetime, BucketPartial], total: int, step: timedelta
) -> list[AggregationBucket]:
    buckets = [
        AggregationBucket(
            start=start,
            end=start + step,
            available_participant_ids=partial.participant_ids,
            highlighted=partial.highlighted,
            level=heat_level(len(partial.participant_ids), total),
            total_participants=total,
        )
        for start, partial in merged.items()
        if partial.participant_ids
    ]
    buckets.sort(key=lambda bucket: bucket.start)
    return buckets


def aggregate(
    participants: Sequence[Participant],
    busy: Iterable[BusyBlock],
    window_start: datetime,
    window_end: datetime,
    *,
    highlighted_ids: Iterable[str] | None = None,
    bucket_minutes: int = DEFAULT_BUCKET_MINUTES,
) -> AggregationResult:
    """Aggregate participants' availability into buckets and expand the busy overlay.

    Parameters
    ----------
    participants:
        Participants with their availability slots.  Duplicate ids count once.
    busy:
        Busy blocks; expanded into ``expanded_busy`` and not counted.
    window_start, window_end:
        Query window ``[window_start, window_end)``.
    highlighted_ids:
        Extra participant ids to highlight, on top of ``Participant.highlighted``.
    bucket_minutes:
        Bucket width.

    Returns
    -------
    AggregationResult
        Empty when there are no participants.
    """
    check_window(window_start, window_end)
    total = len({participant.id for participant in participants})
    if total == 0:
        logger.debug("No participants supplied; returning empty aggregation")
        return AggregationResult()

    highlight_set = frozenset(highlighted_ids or ())
    step = timedelta(minutes=bucket_minutes)

    with engine_span("aggregate", participants=total):
        partials = [
            participant_buckets(
                participant,
                window_start,
                window_end,
                highlighted=participant.highlighted or participant.id in highlight_set,
                bucket_minutes=bucket_minutes,
            )
            for participant in participants
        ]
        merged = reduce(merge_bucket_maps, partials, {})
        buckets = _to_buckets(merged, total, step)

        busy_expansion = expand_all(busy, window_start, window_end)

    warnings = [
        *malformed_warnings(
            slot for participant in participants for slot in participant.availability
        ),
        *busy_expansion.warnings,
    ]
    logger.info(
        "Aggregated %d participants into %d buckets (%d busy instances)",
        total,
        len(buckets),
        len(busy_expansion.instances),
        extra={"window_start": window_start, "window_end": window_end},
    )
    return AggregationResult(
        buckets=buckets,
        expanded_busy=busy_expansion.instances,
        warnings=warnings,
        total_participants=total,
    )


def busy_by_participant(
    expanded_busy: Iterable[ExpandedInstance], participant_ids: Iterable[str]
) -> dict[str, list[ExpandedInstance]]:
    """Split the busy overlay per participant, keeping start order."""
    split: dict[str, list[ExpandedInstance]] = {pid: [] for pid in participant_ids}
    for instance in expanded_busy:
        for pid in instance.participant_ids:
            if pid in split:
                split[pid].append(instance)
    return split


def _free_ids(bucket: AggregationBucket, busy: Sequence[ExpandedInstance]) -> frozenset[str]:
    free = bucket.available_participant_ids
    for instance in busy:
        if instance.start >= bucket.end:
            break
        if not instance.overlaps(bucket.start, bucket.end):
            continue
        if not instance.participant_ids:
            return frozenset()
        free = free - instance.participant_ids
    return free


def find_common_free_time(
    result: AggregationResult, *, min_participants: int | None = None
) -> list[FreeWindow]:
    """Merge buckets where enough participants are free into contiguous windows.

    Participants with an overlapping busy instance are removed from a bucket
    first; busy instances without participants block everyone.  Contiguous
    buckets are merged when the same participants are free in both.

    Parameters
    ----------
    result:
        Output of ``aggregate``.
    min_participants:
        Minimum number of free participants; defaults to everyone.
    """
    if result.total_participants == 0:
        return []
    needed = result.total_participants if min_participants is None else min_participants
    busy = sorted(result.expanded_busy, key=lambda instance: instance.start)

    windows: list[FreeWindow] = []
    for bucket in result.buckets:
        free = _free_ids(bucket, busy)
        if not free or len(free) < needed:
            continue
        last = windows[-1] if windows else None
        if last is not None and last.end == bucket.start and last.participant_ids == free:
            windows[-1] = last.model_copy(update={"end": bucket.end})
        else:
            windows.append(FreeWindow(start=bucket.start, end=bucket.end, participant_ids=free))
    return windows
