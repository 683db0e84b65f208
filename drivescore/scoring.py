"""Trip Safety Score (TSS) and Rolling Driver Score (RDS).

TSS starts at 1000 and loses a weighted, optionally capped deduction per
feature. Low-confidence trips have every weight halved before capping. RDS
blends the day's distance-weighted mean TSS into the previous value with an
exponential moving average.
"""

import math
from dataclasses import asdict, dataclass, fields
from typing import Dict, Optional, Sequence
from .config import CONFIDENCE_THRESHOLD, COLD_START_RDS, DEFAULT_WEIGHTS_VERSION
from .features import TripFeatures

BASE_SCORE = 1000
MIN_SCORE = 300
MAX_SCORE = 1000
LOW_CONFIDENCE_MULTIPLIER = 0.5

TERM_NAMES = (
    "harsh_accel",
    "harsh_brake",
    "harsh_corner",
    "speeding_5",
    "speeding_10",
    "speeding_20",
    "distraction",
    "night",
    "weather",
)


@dataclass(frozen=True)
class ScoreWeights:
    """A versioned weight set. Loaded once per finalize run and never mutated."""

    version: str
    w_a: float
    w_b: float
    w_c: float
    w_s1: float
    w_s2: float
    w_s3: float
    w_d: float
    w_n: float
    w_w: float
    alpha: float
    cap_harsh_accel: Optional[float] = None
    cap_harsh_brake: Optional[float] = None
    cap_harsh_corner: Optional[float] = None
    cap_speeding_5: Optional[float] = None
    cap_speeding_10: Optional[float] = None
    cap_speeding_20: Optional[float] = None
    cap_distraction: Optional[float] = None
    cap_night: Optional[float] = None
    cap_weather: Optional[float] = None

    @classmethod
    def from_dict(cls, version: str, weights: Dict) -> "ScoreWeights":
        """Build from a stored weights document; unknown keys are ignored."""
        known = {f.name for f in fields(cls)} - {"version"}
        return cls(version=version, **{k: v for k, v in weights.items() if k in known})

    def weights_dict(self) -> Dict:
        """The weights document as stored, without the version and unset caps."""
        data = asdict(self)
        data.pop("version")
        return {k: v for k, v in data.items() if v is not None}


DEFAULT_WEIGHTS = ScoreWeights(
    version=DEFAULT_WEIGHTS_VERSION,
    w_a=10,
    w_b=14,
    w_c=12,
    w_s1=2,
    w_s2=6,
    w_s3=12,
    w_d=15,
    w_n=2,
    w_w=4,
    alpha=0.15,
    cap_harsh_accel=100,
    cap_harsh_brake=150,
    cap_harsh_corner=100,
    cap_speeding_5=50,
    cap_speeding_10=150,
    cap_speeding_20=300,
    cap_distraction=200,
    cap_night=50,
    cap_weather=100
)


@dataclass(frozen=True)
class BreakdownTerm:
    feature_value: float
    weight: float
    deduction: float
    capped_deduction: float


@dataclass(frozen=True)
class ScoreBreakdown:
    base: int
    harsh_accel: BreakdownTerm
    harsh_brake: BreakdownTerm
    harsh_corner: BreakdownTerm
    speeding_5: BreakdownTerm
    speeding_10: BreakdownTerm
    speeding_20: BreakdownTerm
    distraction: BreakdownTerm
    night: BreakdownTerm
    weather: BreakdownTerm
    total_deduction: float
    raw_score: float
    clamped_score: int
    weights_version: str

    def terms(self) -> Dict[str, BreakdownTerm]:
        return {name: getattr(self, name) for name in TERM_NAMES}

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class TripScore:
    trip_id: str
    tss: int
    breakdown: ScoreBreakdown
    confidence: str
    weights_version: str


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, value))


def _term(feature_value: float, weight: float, cap: Optional[float]) -> BreakdownTerm:
    deduction = feature_value * weight
    capped = min(deduction, cap) if cap is not None else deduction
    return BreakdownTerm(
        feature_value=feature_value,
        weight=weight,
        deduction=deduction,
        capped_deduction=capped
    )


def calculate_tss(features: TripFeatures, weights: ScoreWeights, confidence: str) -> ScoreBreakdown:
    """Calculate the Trip Safety Score with a per-term breakdown."""
    multiplier = LOW_CONFIDENCE_MULTIPLIER if confidence == "low" else 1.0

    terms = {
        "harsh_accel": _term(features.harsh_accel_per_100km, weights.w_a * multiplier, weights.cap_harsh_accel),
        "harsh_brake": _term(features.harsh_brake_per_100km, weights.w_b * multiplier, weights.cap_harsh_brake),
        "harsh_corner": _term(features.harsh_corner_per_100km, weights.w_c * multiplier, weights.cap_harsh_corner),
        "speeding_5": _term(features.mins_speeding_5, weights.w_s1 * multiplier, weights.cap_speeding_5),
        "speeding_10": _term(features.mins_speeding_10, weights.w_s2 * multiplier, weights.cap_speeding_10),
        "speeding_20": _term(features.mins_speeding_20, weights.w_s3 * multiplier, weights.cap_speeding_20),
        "distraction": _term(features.distraction_mins, weights.w_d * multiplier, weights.cap_distraction),
        # minutes of night driving, not the fraction
        "night": _term(features.night_fraction * features.trip_minutes, weights.w_n * multiplier, weights.cap_night),
        "weather": _term(features.weather_penalty_mins, weights.w_w * multiplier, weights.cap_weather),
    }

    total_deduction = 0.0
    for name in TERM_NAMES:
        total_deduction += terms[name].capped_deduction

    raw_score = BASE_SCORE - total_deduction

    return ScoreBreakdown(
        base=BASE_SCORE,
        total_deduction=total_deduction,
        raw_score=raw_score,
        clamped_score=round_half_up(clamp_score(raw_score)),
        weights_version=weights.version,
        **terms
    )


def score_trip_with_breakdown(
    trip_id: str,
    features: TripFeatures,
    weights: ScoreWeights,
    confidence: str
) -> TripScore:
    breakdown = calculate_tss(features, weights, confidence)
    return TripScore(
        trip_id=trip_id,
        tss=breakdown.clamped_score,
        breakdown=breakdown,
        confidence=confidence,
        weights_version=weights.version
    )


def update_daily_rds(
    current_rds: Optional[float],
    trip_scores: Sequence[float],
    trip_distances: Sequence[float],
    alpha: float
) -> int:
    """Blend a batch of same-day trip scores into the driver's daily RDS.

    The batch mean is weighted by distance, so a long trip moves the score
    more than a short one. Without a previous value the cold-start score is
    used as the starting point.
    """
    if len(trip_scores) != len(trip_distances):
        raise ValueError("trip_scores and trip_distances must have the same length")

    previous = current_rds if current_rds is not None else COLD_START_RDS

    if not trip_scores:
        return round_half_up(previous)

    weighted_total = 0.0
    total_distance = 0.0
    for score, distance in zip(trip_scores, trip_distances):
        weighted_total += score * distance
        total_distance += distance

    mean_tss = weighted_total / total_distance if total_distance > 0 else trip_scores[0]

    new_rds = alpha * mean_tss + (1 - alpha) * previous
    return int(clamp_score(round_half_up(new_rds)))


def update_rds_with_single_trip(
    current_rds: Optional[float],
    trip_score: float,
    trip_distance: float,
    alpha: float
) -> int:
    return update_daily_rds(current_rds, [trip_score], [trip_distance], alpha)


def determine_confidence(quality_ratio: float) -> str:
    """'high' when at least 70% of samples pass the quality checks, else 'low'."""
    return "high" if quality_ratio >= CONFIDENCE_THRESHOLD else "low"
