from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, Sequence
from .config import QualityGates
from .quality import DEFAULT_QUALITY_GATES, passes_position_checks
from .samples import DetectedEvent, ProcessedSample

NIGHT_START_HOUR = 22
NIGHT_END_HOUR = 5


@dataclass
class QualityMetrics:
    samples_total: int = 0
    samples_passed_quality: int = 0
    quality_ratio: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class TripContext:
    night_fraction: float = 0.0
    weather_penalty_mins: float = 0.0
    road_mix: Dict[str, float] = field(default_factory=dict)
    quality: QualityMetrics = field(default_factory=QualityMetrics)


@dataclass
class TripFeatures:
    """Per-trip feature vector consumed by the scorer."""

    distance_km: float
    trip_minutes: float
    harsh_brake_per_100km: float = 0.0
    harsh_accel_per_100km: float = 0.0
    harsh_corner_per_100km: float = 0.0
    mins_speeding_5: float = 0.0
    mins_speeding_10: float = 0.0
    mins_speeding_20: float = 0.0
    distraction_mins: float = 0.0
    night_fraction: float = 0.0
    weather_penalty_mins: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


def count_events_by_type(events: Sequence[DetectedEvent], event_type: str) -> int:
    return sum(1 for e in events if e.type == event_type)


def sum_event_duration_minutes(events: Sequence[DetectedEvent], event_type: str) -> float:
    """Sum the duration of events of one type in minutes. Open-ended events count as zero."""
    total_s = 0.0
    for event in events:
        if event.type == event_type and event.ts_end is not None:
            total_s += (event.ts_end - event.ts_start).total_seconds()
    return total_s / 60.0


def normalize_count_per_100km(count: int, distance_km: float) -> float:
    if distance_km <= 0:
        return 0.0
    return count / distance_km * 100


def extract_trip_features(
    events: Sequence[DetectedEvent],
    distance_km: float,
    trip_minutes: float,
    context: TripContext
) -> TripFeatures:
    """Normalize detected events and trip context into the scoring feature vector."""
    return TripFeatures(
        distance_km=distance_km,
        trip_minutes=trip_minutes,
        harsh_brake_per_100km=normalize_count_per_100km(
            count_events_by_type(events, "harsh_brake"), distance_km),
        harsh_accel_per_100km=normalize_count_per_100km(
            count_events_by_type(events, "harsh_accel"), distance_km),
        harsh_corner_per_100km=normalize_count_per_100km(
            count_events_by_type(events, "harsh_corner"), distance_km),
        mins_speeding_5=sum_event_duration_minutes(events, "speeding_5"),
        mins_speeding_10=sum_event_duration_minutes(events, "speeding_10"),
        mins_speeding_20=sum_event_duration_minutes(events, "speeding_20"),
        distraction_mins=sum_event_duration_minutes(events, "distraction"),
        night_fraction=context.night_fraction,
        weather_penalty_mins=context.weather_penalty_mins
    )


def calculate_road_mix(samples: Sequence[ProcessedSample]) -> Dict[str, float]:
    """Proportion of samples per road class. Unmatched samples are ignored."""
    counts = Counter(s.road_class for s in samples if s.road_class)
    total = sum(counts.values())
    return {road_class: count / total for road_class, count in counts.items()}


def calculate_quality_metrics(
    samples: Sequence[ProcessedSample],
    gates: QualityGates = DEFAULT_QUALITY_GATES
) -> QualityMetrics:
    """Fraction of samples with a trustworthy position.

    Uses the same HDOP and map-match checks as the detection gate; the speed
    check is left out because this measures positional trust, not motion.
    """
    passed = sum(1 for s in samples if passes_position_checks(s, gates))
    total = len(samples)
    return QualityMetrics(
        samples_total=total,
        samples_passed_quality=passed,
        quality_ratio=passed / total if total > 0 else 0.0
    )


def _is_night(ts: datetime) -> bool:
    # naive timestamps are stored as UTC
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.hour >= NIGHT_START_HOUR or ts.hour < NIGHT_END_HOUR


def calculate_night_fraction(samples: Sequence[ProcessedSample]) -> float:
    """Share of driving time between 22:00 and 05:00 UTC.

    Each inter-sample interval is attributed to the hour of its later sample.
    """
    night_minutes = 0.0
    total_minutes = 0.0

    for prev, curr in zip(samples, samples[1:]):
        dt = (curr.ts - prev.ts).total_seconds() / 60.0
        total_minutes += dt
        if _is_night(curr.ts):
            night_minutes += dt

    return night_minutes / total_minutes if total_minutes > 0 else 0.0


def build_trip_context(
    samples: Sequence[ProcessedSample],
    weather_penalty_mins: float = 0.0,
    gates: QualityGates = DEFAULT_QUALITY_GATES
) -> TripContext:
    return TripContext(
        night_fraction=calculate_night_fraction(samples),
        weather_penalty_mins=weather_penalty_mins,
        road_mix=calculate_road_mix(samples),
        quality=calculate_quality_metrics(samples, gates)
    )
