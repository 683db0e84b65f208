from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import List, Dict, Any, Optional
from ..config import config
from ..db import get_db
from ..errors import PersistenceError, ValidationError
from ..finalize import finalize_trips
from ..ingest import ingest_telemetry
from ..persistence import get_event_stats, get_trip_events, get_trip_score, get_user_daily_scores, get_user_trips
from ..providers.map import MapProvider
from ..providers.weather import WeatherProvider
from ..schemas import FinalizeResponse, IngestPayload, IngestResponse

router = APIRouter()


def get_map_provider(request: Request) -> MapProvider:
    """Map provider resolved at startup."""
    return request.app.state.map_provider


def get_weather_provider(request: Request) -> WeatherProvider:
    """Weather provider resolved at startup."""
    return request.app.state.weather_provider


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


@router.post("/ingest-telemetry", response_model=IngestResponse)
def ingest_telemetry_endpoint(payload: IngestPayload, db: Session = Depends(get_db)) -> IngestResponse:
    """Append a batch of telemetry samples to the device's open trip."""
    try:
        return ingest_telemetry(db, payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/trips-finalize", response_model=FinalizeResponse)
def trips_finalize_endpoint(
    db: Session = Depends(get_db),
    map_provider: MapProvider = Depends(get_map_provider),
    weather_provider: WeatherProvider = Depends(get_weather_provider)
) -> FinalizeResponse:
    """Finalize all trips that have stopped receiving samples."""
    return finalize_trips(db, map_provider, weather_provider)


@router.get("/users/{user_id}/trips")
def get_user_trips_endpoint(
    user_id: str,
    db: Session = Depends(get_db),
    limit: int = Query(config.api_default_limit, ge=1, le=config.api_max_limit, description="Number of trips to return"),
    offset: int = Query(0, ge=0, description="Number of trips to skip")
) -> List[Dict[str, Any]]:
    """Get trips for a specific user."""
    try:
        trips = get_user_trips(db, user_id, limit, offset)
    except SQLAlchemyError as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

    result = []
    for trip in trips:
        trip_data = {
            "id": trip.id,
            "user_id": trip.user_id,
            "device_id": trip.device_id,
            "status": trip.status,
            "started_at": _isoformat(trip.started_at),
            "ended_at": _isoformat(trip.ended_at),
            "distance_km": trip.distance_km,
            "duration_s": trip.duration_s,
            "night_fraction": trip.night_fraction,
            "weather": trip.weather,
            "road_mix": trip.road_mix,
            "quality": trip.quality
        }
        result.append(trip_data)

    return result


@router.get("/trips/{trip_id}/events")
def get_trip_events_endpoint(trip_id: str, db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    """Get detected events for a trip in time order."""
    try:
        events = get_trip_events(db, trip_id)
    except SQLAlchemyError as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

    result = []
    for event in events:
        event_data = {
            "id": event.id,
            "trip_id": event.trip_id,
            "type": event.type,
            "ts_start": _isoformat(event.ts_start),
            "ts_end": _isoformat(event.ts_end),
            "severity": event.severity,
            "lat": event.lat,
            "lon": event.lon,
            "meta": event.meta
        }
        result.append(event_data)

    return result


@router.get("/trips/{trip_id}/score")
def get_trip_score_endpoint(trip_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Get the trip safety score with its full breakdown."""
    try:
        score = get_trip_score(db, trip_id)
    except SQLAlchemyError as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

    if score is None:
        raise HTTPException(status_code=404, detail=f"No score for trip {trip_id}")

    return {
        "trip_id": score.trip_id,
        "tss": score.tss,
        "confidence": score.confidence,
        "weights_version": score.weights_version,
        "breakdown": score.breakdown,
        "created_at": _isoformat(score.created_at)
    }


@router.get("/users/{user_id}/scores")
def get_user_scores_endpoint(
    user_id: str,
    db: Session = Depends(get_db),
    days: int = Query(30, ge=1, le=365, description="Number of days to look back")
) -> List[Dict[str, Any]]:
    """Get daily rolling scores for a specific user."""
    try:
        scores = get_user_daily_scores(db, user_id, days)
    except SQLAlchemyError as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")

    result = []
    for score in scores:
        score_data = {
            "user_id": score.user_id,
            "day": _isoformat(score.day),
            "rds": score.rds,
            "trips_count": score.trips_count,
            "total_distance_km": score.total_distance_km
        }
        result.append(score_data)

    return result


@router.get("/events/stats")
def get_events_stats(
    db: Session = Depends(get_db),
    trip_id: Optional[str] = Query(None, description="Filter by trip ID")
) -> Dict[str, Any]:
    """Get event statistics."""
    try:
        return get_event_stats(db, trip_id)
    except SQLAlchemyError as e:
        raise HTTPException(status_code=500, detail=f"Database error: {str(e)}")


@router.get("/config/quality-gates")
def get_quality_gates_endpoint() -> Dict[str, Any]:
    """Current quality gate thresholds and trip minimums."""
    return config.get_quality_gates().to_dict()


@router.get("/config")
def get_config_endpoint() -> Dict[str, Any]:
    """Thresholds currently used for detection, finalization and scoring."""
    return {
        "quality_gates": config.get_quality_gates().to_dict(),
        "detection": config.get_detection_config(),
        "finalize": config.get_finalize_config(),
        "scoring": config.get_scoring_config()
    }
