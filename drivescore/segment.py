"""Segmentation shared by every event detector.

A segment is a list of sample indices. Detectors group consecutive samples
that satisfy a predicate, drop segments that are too short, then stitch the
survivors back together across small measurement gaps. Duration filtering
runs before debouncing, and a merged segment is never re-checked against the
minimum duration.
"""

from typing import Callable, List, Sequence
from .config import QualityGates
from .samples import ProcessedSample

Segment = List[int]


def group_consecutive(
    samples: Sequence[ProcessedSample],
    predicate: Callable[[ProcessedSample], bool]
) -> List[Segment]:
    """Group runs of consecutive samples for which ``predicate`` holds."""
    segments = []
    current = []

    for i, sample in enumerate(samples):
        if predicate(sample):
            current.append(i)
        elif current:
            segments.append(current)
            current = []

    if current:
        segments.append(current)

    return segments


def _span_ms(segment: Segment, samples: Sequence[ProcessedSample]) -> float:
    start = samples[segment[0]].ts
    end = samples[segment[-1]].ts
    return (end - start).total_seconds() * 1000.0


def filter_by_duration(
    segments: List[Segment],
    samples: Sequence[ProcessedSample],
    min_duration_ms: float
) -> List[Segment]:
    """Keep segments with at least two samples spanning ``min_duration_ms``."""
    return [
        segment for segment in segments
        if len(segment) >= 2 and _span_ms(segment, samples) >= min_duration_ms
    ]


def debounce(
    segments: List[Segment],
    samples: Sequence[ProcessedSample],
    gap_threshold_ms: float
) -> List[Segment]:
    """Merge segments separated by a gap of at most ``gap_threshold_ms``."""
    if len(segments) <= 1:
        return [list(segment) for segment in segments]

    merged = []
    current = list(segments[0])

    for segment in segments[1:]:
        gap = (samples[segment[0]].ts - samples[current[-1]].ts).total_seconds() * 1000.0
        if gap <= gap_threshold_ms:
            current.extend(segment)
        else:
            merged.append(current)
            current = list(segment)

    merged.append(current)
    return merged


def segment_duration(segment: Segment, samples: Sequence[ProcessedSample]) -> float:
    """Segment duration in seconds; zero when it has fewer than two samples."""
    if len(segment) < 2:
        return 0.0
    return _span_ms(segment, samples) / 1000.0


def segment_middle(segment: Segment, samples: Sequence[ProcessedSample]) -> ProcessedSample:
    return samples[segment[len(segment) // 2]]


def meets_minimum_requirements(distance_km: float, duration_minutes: float, gates: QualityGates) -> bool:
    """Check if a trip is long enough to be scored."""
    return distance_km >= gates.min_trip_distance_km and duration_minutes >= gates.min_trip_minutes
