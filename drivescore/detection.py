import logging
from typing import Callable, Dict, List, Optional, Sequence
from .config import (
    QualityGates,
    HARSH_BRAKE_MPS2,
    HARSH_ACCEL_MPS2,
    HARSH_CORNER_G,
    HARSH_CORNER_MOTORWAY_G,
    HARSH_BRAKE_MIN_DURATION_MS,
    HARSH_ACCEL_MIN_DURATION_MS,
    HARSH_CORNER_MIN_DURATION_MS,
    SPEEDING_MIN_DURATION_MS,
    DEBOUNCE_GAP_MS
)
from .preprocessing import mps_to_mph, mps2_to_g
from .quality import DEFAULT_QUALITY_GATES, passes_quality_gates
from .samples import DetectedEvent, ProcessedSample
from .segment import (
    Segment,
    debounce,
    filter_by_duration,
    group_consecutive,
    segment_duration,
    segment_middle
)

logger = logging.getLogger(__name__)

# Severity saturates this far past the threshold (m/s^2)
HARSH_LONGITUDINAL_SEVERITY_RANGE = 3.0

SPEEDING_BUCKETS = (
    (5, "speeding_5"),
    (10, "speeding_10"),
    (20, "speeding_20"),
)


def _find_segments(
    samples: Sequence[ProcessedSample],
    gates: QualityGates,
    condition: Callable[[ProcessedSample], bool],
    min_duration_ms: float
) -> List[Segment]:
    """Quality gate + condition, then duration filter, then debounce."""
    segments = group_consecutive(
        samples,
        lambda s: passes_quality_gates(s, gates) and condition(s)
    )
    if min_duration_ms > 0:
        segments = filter_by_duration(segments, samples, min_duration_ms)
    return debounce(segments, samples, DEBOUNCE_GAP_MS)


def _build_event(
    event_type: str,
    segment: Segment,
    samples: Sequence[ProcessedSample],
    severity: float,
    metadata: Dict
) -> DetectedEvent:
    middle = segment_middle(segment, samples)
    return DetectedEvent(
        type=event_type,
        ts_start=samples[segment[0]].ts,
        ts_end=samples[segment[-1]].ts,
        severity=severity,
        lat=middle.lat,
        lon=middle.lon,
        metadata=metadata
    )


def _corner_threshold(road_class: Optional[str]) -> float:
    return HARSH_CORNER_MOTORWAY_G if road_class == "motorway" else HARSH_CORNER_G


def _lateral_g(sample: ProcessedSample) -> float:
    return mps2_to_g(abs(sample.accel_lat_smooth or 0.0))


def detect_harsh_brakes(
    samples: Sequence[ProcessedSample],
    gates: QualityGates = DEFAULT_QUALITY_GATES
) -> List[DetectedEvent]:
    """Detect sustained longitudinal deceleration below the harsh brake threshold."""
    segments = _find_segments(
        samples,
        gates,
        lambda s: s.accel_long_smooth is not None and s.accel_long_smooth < HARSH_BRAKE_MPS2,
        HARSH_BRAKE_MIN_DURATION_MS
    )

    events = []
    for segment in segments:
        peak_accel = 0.0
        for idx in segment:
            accel = samples[idx].accel_long_smooth or 0.0
            if accel < peak_accel:
                peak_accel = accel

        excess = abs(peak_accel - HARSH_BRAKE_MPS2)
        severity = min(excess / HARSH_LONGITUDINAL_SEVERITY_RANGE, 1.0)

        events.append(_build_event("harsh_brake", segment, samples, severity, {
            "peak_accel": peak_accel,
            "duration_s": segment_duration(segment, samples)
        }))

    return events


def detect_harsh_accels(
    samples: Sequence[ProcessedSample],
    gates: QualityGates = DEFAULT_QUALITY_GATES
) -> List[DetectedEvent]:
    """Detect sustained longitudinal acceleration above the harsh accel threshold."""
    segments = _find_segments(
        samples,
        gates,
        lambda s: s.accel_long_smooth is not None and s.accel_long_smooth > HARSH_ACCEL_MPS2,
        HARSH_ACCEL_MIN_DURATION_MS
    )

    events = []
    for segment in segments:
        peak_accel = 0.0
        for idx in segment:
            accel = samples[idx].accel_long_smooth or 0.0
            if accel > peak_accel:
                peak_accel = accel

        severity = min((peak_accel - HARSH_ACCEL_MPS2) / HARSH_LONGITUDINAL_SEVERITY_RANGE, 1.0)

        events.append(_build_event("harsh_accel", segment, samples, severity, {
            "peak_accel": peak_accel,
            "duration_s": segment_duration(segment, samples)
        }))

    return events


def detect_harsh_corners(
    samples: Sequence[ProcessedSample],
    gates: QualityGates = DEFAULT_QUALITY_GATES
) -> List[DetectedEvent]:
    """Detect sustained lateral acceleration; motorways get a higher threshold."""
    segments = _find_segments(
        samples,
        gates,
        lambda s: s.accel_lat_smooth is not None and _lateral_g(s) > _corner_threshold(s.road_class),
        HARSH_CORNER_MIN_DURATION_MS
    )

    events = []
    for segment in segments:
        peak_lateral_g = max(_lateral_g(samples[idx]) for idx in segment)

        middle = segment_middle(segment, samples)
        threshold = _corner_threshold(middle.road_class)
        severity = min((peak_lateral_g - threshold) / threshold, 1.0)

        events.append(_build_event("harsh_corner", segment, samples, severity, {
            "peak_lateral_g": peak_lateral_g,
            "threshold_g": threshold,
            "road_class": middle.road_class,
            "duration_s": segment_duration(segment, samples)
        }))

    return events


def detect_speeding_bucket(
    samples: Sequence[ProcessedSample],
    threshold_mph: float,
    event_type: str,
    gates: QualityGates = DEFAULT_QUALITY_GATES
) -> List[DetectedEvent]:
    """Detect sustained speeding at least ``threshold_mph`` over the posted limit."""

    def is_speeding(s: ProcessedSample) -> bool:
        if s.speed_limit_mps is None:
            return False
        return mps_to_mph(s.speed_mps) >= mps_to_mph(s.speed_limit_mps) + threshold_mph

    segments = _find_segments(samples, gates, is_speeding, SPEEDING_MIN_DURATION_MS)

    events = []
    for segment in segments:
        max_excess = 0.0
        for idx in segment:
            sample = samples[idx]
            if sample.speed_limit_mps is None:
                continue
            excess = mps_to_mph(sample.speed_mps - sample.speed_limit_mps)
            if excess > max_excess:
                max_excess = excess

        severity = min((max_excess - threshold_mph) / threshold_mph, 1.0)

        events.append(_build_event(event_type, segment, samples, severity, {
            "max_excess_mph": max_excess,
            "threshold_mph": threshold_mph,
            "duration_s": segment_duration(segment, samples)
        }))

    return events


def detect_speeding(
    samples: Sequence[ProcessedSample],
    gates: QualityGates = DEFAULT_QUALITY_GATES
) -> List[DetectedEvent]:
    """Run every speeding bucket independently; one interval can emit several."""
    events = []
    for threshold_mph, event_type in SPEEDING_BUCKETS:
        events.extend(detect_speeding_bucket(samples, threshold_mph, event_type, gates))
    return events


def detect_distraction(
    samples: Sequence[ProcessedSample],
    gates: QualityGates = DEFAULT_QUALITY_GATES
) -> List[DetectedEvent]:
    """Detect screen-on periods while moving. No minimum duration, only debounce."""
    segments = _find_segments(samples, gates, lambda s: s.screen_on is True, 0)

    events = []
    for segment in segments:
        duration_s = segment_duration(segment, samples)
        severity = min(duration_s / 60.0, 1.0)

        events.append(_build_event("distraction", segment, samples, severity, {
            "duration_s": duration_s
        }))

    return events


def detect_all_events(
    samples: Sequence[ProcessedSample],
    gates: QualityGates = DEFAULT_QUALITY_GATES
) -> List[DetectedEvent]:
    """Run every detector and return the events ordered by start time."""
    events = []
    events.extend(detect_harsh_brakes(samples, gates))
    events.extend(detect_harsh_accels(samples, gates))
    events.extend(detect_harsh_corners(samples, gates))
    events.extend(detect_speeding(samples, gates))
    events.extend(detect_distraction(samples, gates))

    events.sort(key=lambda e: e.ts_start)

    logger.debug("Detected %d events across %d samples", len(events), len(samples))
    return events
