"""Batch trip finalization.

Each eligible trip moves open -> finalizing -> closed. Trips below the
minimum distance or duration are closed without a score. Every other trip is
preprocessed, map matched, checked against the weather, scanned for events
and scored, and the results are written in one unit of work together with the
driver's daily rolling score.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from .config import QualityGates, config
from .errors import DependencyError, DriveScoreError
from .features import TripContext, TripFeatures, build_trip_context, extract_trip_features
from .geo import build_line_string, calculate_trip_distance, exclude_trip_ends
from .models import Trip, utcnow
from .persistence import (
    commit,
    get_day_trip_scores,
    get_latest_weights,
    get_previous_rds,
    get_trips_to_finalize,
    load_samples,
    replace_trip_events,
    set_trip_status,
    update_trip_summary,
    upsert_driver_score_daily,
    upsert_trip_features,
    upsert_trip_score
)
from .preprocessing import preprocess_samples, time_diff_seconds
from .detection import detect_all_events
from .providers.map import MapProvider, apply_map_matching, match_samples
from .providers.weather import (
    WeatherProvider,
    WeatherRequest,
    calculate_weather_penalty,
    fetch_trip_weather,
    get_dominant_weather_condition
)
from .samples import DetectedEvent, ProcessedSample
from .schemas import FinalizeResponse
from .scoring import (
    ScoreWeights,
    TripScore,
    determine_confidence,
    round_half_up,
    score_trip_with_breakdown,
    update_rds_with_single_trip
)
from .segment import meets_minimum_requirements

logger = logging.getLogger(__name__)

WEIGHTS_LOAD_ERROR = "Failed to load score weights"
DISCOVERY_ERROR = "Failed to get trips to finalize"


@dataclass
class PipelineResult:
    """Everything the scoring pipeline derives from one trip's samples."""

    samples: List[ProcessedSample]
    started_at: datetime
    ended_at: datetime
    distance_km: float
    duration_s: float
    context: TripContext
    weather: Dict = field(default_factory=dict)
    events: List[DetectedEvent] = field(default_factory=list)
    features: Optional[TripFeatures] = None
    confidence: str = "high"
    score: Optional[TripScore] = None
    geom: str = "LINESTRING EMPTY"

    @property
    def trip_minutes(self) -> float:
        return self.duration_s / 60.0


def _enrich_with_map(
    trip_id: str,
    samples: List[ProcessedSample],
    map_provider: MapProvider
) -> List[ProcessedSample]:
    try:
        results = match_samples(map_provider, samples)
    except DependencyError as e:
        logger.warning("Map matching failed for trip %s: %s", trip_id, e)
        return samples
    return apply_map_matching(samples, results)


def _lookup_weather(
    trip_id: str,
    samples: Sequence[ProcessedSample],
    trip_minutes: float,
    weather_provider: WeatherProvider
):
    """Weather penalty minutes and the summary stored on the trip row."""
    request = WeatherRequest(
        lat=samples[0].lat,
        lon=samples[0].lon,
        start_time=samples[0].ts,
        end_time=samples[-1].ts
    )
    try:
        conditions = fetch_trip_weather(weather_provider, request)
    except DependencyError as e:
        logger.warning("Weather lookup failed for trip %s: %s", trip_id, e)
        return 0.0, {}

    penalty_mins = calculate_weather_penalty(conditions, trip_minutes)
    return penalty_mins, {
        "dominant_condition": get_dominant_weather_condition(conditions),
        "penalty_mins": penalty_mins
    }


def run_pipeline(
    trip_id: str,
    samples: Sequence[ProcessedSample],
    weights: ScoreWeights,
    map_provider: MapProvider,
    weather_provider: WeatherProvider,
    gates: Optional[QualityGates] = None,
    exclude_meters: Optional[float] = None
) -> PipelineResult:
    """Score one trip from its time-ordered samples. Touches no storage.

    Provider failures are logged and the trip is scored without map or
    weather enrichment.
    """
    if not samples:
        raise DriveScoreError(f"Trip {trip_id} has no samples")
    gates = gates or config.get_quality_gates()
    if exclude_meters is None:
        exclude_meters = config.exclude_trip_end_meters

    started_at = samples[0].ts
    ended_at = samples[-1].ts
    distance_km = calculate_trip_distance(samples)
    duration_s = time_diff_seconds(started_at, ended_at)
    trip_minutes = duration_s / 60.0

    processed = preprocess_samples(samples)
    processed = _enrich_with_map(trip_id, processed, map_provider)

    weather_penalty_mins, weather = _lookup_weather(trip_id, processed, trip_minutes, weather_provider)
    context = build_trip_context(processed, weather_penalty_mins, gates)

    # Trip ends are excluded from detection only, not from distance or duration
    detection_samples = exclude_trip_ends(processed, exclude_meters)
    events = detect_all_events(detection_samples, gates)
    logger.info("Detected %d events for trip %s", len(events), trip_id)

    features = extract_trip_features(events, distance_km, trip_minutes, context)
    confidence = determine_confidence(context.quality.quality_ratio)
    score = score_trip_with_breakdown(trip_id, features, weights, confidence)
    logger.info("Trip %s scored %d with confidence %s", trip_id, score.tss, confidence)

    return PipelineResult(
        samples=processed,
        started_at=started_at,
        ended_at=ended_at,
        distance_km=distance_km,
        duration_s=duration_s,
        context=context,
        weather=weather,
        events=events,
        features=features,
        confidence=confidence,
        score=score,
        geom=build_line_string(processed)
    )


def _close_insufficient(db: Session, trip: Trip, samples: Sequence[ProcessedSample],
                        distance_km: float, duration_s: float):
    update_trip_summary(
        db, trip,
        status="closed",
        ended_at=samples[-1].ts,
        distance_km=distance_km,
        duration_s=round_half_up(duration_s),
        quality={"insufficient_data": True}
    )
    commit(db, f"close trip {trip.id}")


def _rebuild_daily_score(db: Session, user_id: str, day: date, alpha: float):
    """Recompute the day's RDS from the previous day's RDS and every trip scored that day.

    Trips are blended one at a time in start order. Re-finalizing a trip
    therefore replaces its contribution instead of adding a second one.
    """
    trips = get_day_trip_scores(db, user_id, day)
    rds = get_previous_rds(db, user_id, day)
    for tss, distance_km in trips:
        rds = update_rds_with_single_trip(rds, tss, distance_km, alpha)
    upsert_driver_score_daily(
        db, user_id, day, rds,
        trips_count=len(trips),
        total_distance_km=sum(distance_km for _, distance_km in trips)
    )


def _persist_result(db: Session, trip: Trip, result: PipelineResult, weights: ScoreWeights):
    """Write the trip row, events, features, score and daily RDS, then commit once."""
    context = result.context
    update_trip_summary(
        db, trip,
        status="closed",
        ended_at=result.ended_at,
        distance_km=result.distance_km,
        duration_s=round_half_up(result.duration_s),
        night_fraction=context.night_fraction,
        weather=result.weather,
        road_mix=context.road_mix,
        quality=context.quality.to_dict(),
        geom=result.geom
    )
    replace_trip_events(db, trip.id, result.events)
    upsert_trip_features(db, trip.id, result.features)
    upsert_trip_score(db, result.score)

    _rebuild_daily_score(db, trip.user_id, trip.started_at.date(), weights.alpha)

    commit(db, f"finalize trip {trip.id}")


def finalize_trip(
    db: Session,
    trip_id: str,
    weights: ScoreWeights,
    map_provider: MapProvider,
    weather_provider: WeatherProvider,
    gates: Optional[QualityGates] = None
) -> Optional[PipelineResult]:
    """Finalize a single trip.

    Returns the pipeline result, or None when the trip was closed as
    insufficient data. Raises on persistence failures; the trip is then left
    in ``finalizing`` until the reclaim timeout makes it eligible again.
    """
    gates = gates or config.get_quality_gates()
    logger.info("Processing trip %s", trip_id)

    trip = db.get(Trip, trip_id)
    if trip is None:
        raise DriveScoreError(f"Failed to load trip: {trip_id} not found")

    set_trip_status(db, trip, "finalizing")
    commit(db, f"mark trip {trip_id} finalizing")

    samples = load_samples(db, trip_id)
    if not samples:
        raise DriveScoreError("Failed to load samples: trip has no samples")

    distance_km = calculate_trip_distance(samples)
    duration_s = time_diff_seconds(samples[0].ts, samples[-1].ts)

    if not meets_minimum_requirements(distance_km, duration_s / 60.0, gates):
        logger.info(
            "Trip %s does not meet minimum requirements (%.2f km, %.1f min)",
            trip_id, distance_km, duration_s / 60.0
        )
        _close_insufficient(db, trip, samples, distance_km, duration_s)
        return None

    result = run_pipeline(trip_id, samples, weights, map_provider, weather_provider, gates)
    _persist_result(db, trip, result, weights)

    logger.info("Trip %s finalized successfully", trip_id)
    return result


def finalize_trips(
    db: Session,
    map_provider: MapProvider,
    weather_provider: WeatherProvider,
    gates: Optional[QualityGates] = None,
    now: Optional[datetime] = None
) -> FinalizeResponse:
    """Finalize every eligible trip, one at a time.

    A failing trip is rolled back and reported in ``errors``; the remaining
    trips are still processed.
    """
    now = now or utcnow()
    errors = []
    finalized = 0

    try:
        weights = get_latest_weights(db)
    except (SQLAlchemyError, TypeError) as e:
        logger.error("Failed to load score weights: %s", e)
        weights = None
    if weights is None:
        return FinalizeResponse(finalized=0, errors=[WEIGHTS_LOAD_ERROR])

    try:
        trip_ids = get_trips_to_finalize(
            db, now,
            idle_seconds=config.finalize_idle_seconds,
            reclaim_seconds=config.finalizing_reclaim_seconds
        )
    except SQLAlchemyError as e:
        logger.error("Failed to get trips to finalize: %s", e)
        return FinalizeResponse(finalized=0, errors=[DISCOVERY_ERROR])

    if not trip_ids:
        logger.info("No trips to finalize")
        return FinalizeResponse(finalized=0, errors=[])

    logger.info("Found %d trips to finalize", len(trip_ids))

    for trip_id in trip_ids:
        try:
            finalize_trip(db, trip_id, weights, map_provider, weather_provider, gates)
            finalized += 1
        except Exception as e:
            db.rollback()
            logger.exception("Failed to finalize trip %s", trip_id)
            errors.append(f"Trip {trip_id}: {e}")

    logger.info("Finalize run complete: %d finalized, %d errors", finalized, len(errors))
    return FinalizeResponse(finalized=finalized, errors=errors)
