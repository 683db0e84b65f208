from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Sequence, Tuple
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from .errors import PersistenceError
from .features import TripFeatures as TripFeatureVector
from .models import (
    Device,
    Trip,
    Sample,
    Event,
    TripFeatures,
    TripScore,
    DriverScoreDaily,
    ScoreWeightSet,
    utcnow
)
from .samples import EVENT_TYPES, TRIP_STATUSES, AccelSample, DetectedEvent, ProcessedSample, TelemetrySample
from .scoring import ScoreWeights, TripScore as TripScoreResult


def _flush(db: Session, operation: str):
    """Flush pending writes, translating database failures."""
    try:
        db.flush()
    except SQLAlchemyError as e:
        raise PersistenceError(operation, e) from e


def commit(db: Session, operation: str):
    """Commit the current unit of work, translating database failures."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(operation, e) from e


# ---------------------------------------------------------------------------
# Ingest
# ---------------------------------------------------------------------------

def upsert_device(db: Session, device_id: str, user_id: str) -> Device:
    """Ensure a device exists and belongs to ``user_id``."""
    device = db.get(Device, device_id)
    if device is None:
        device = Device(id=device_id, user_id=user_id, platform="unknown")
        db.add(device)
    else:
        device.user_id = user_id
        device.updated_at = utcnow()
    _flush(db, "upsert device")
    return device


def find_open_trip(db: Session, device_id: str) -> Optional[Trip]:
    """Most recently started open trip for a device."""
    return db.query(Trip).filter(
        Trip.device_id == device_id,
        Trip.status == "open"
    ).order_by(Trip.started_at.desc()).first()


def create_trip(db: Session, user_id: str, device_id: str, started_at: datetime) -> Trip:
    trip = Trip(
        user_id=user_id,
        device_id=device_id,
        started_at=started_at,
        status="open"
    )
    db.add(trip)
    _flush(db, "create trip")
    return trip


def insert_samples(db: Session, trip_id: str, samples: Sequence[TelemetrySample]) -> int:
    """Insert samples for a trip, skipping timestamps already stored.

    Returns the number of new rows. Retried batches are therefore harmless.
    """
    timestamps = [s.ts for s in samples]
    existing = {
        row.ts for row in db.query(Sample.ts).filter(
            Sample.trip_id == trip_id,
            Sample.ts.in_(timestamps)
        )
    }

    inserted = 0
    for sample in samples:
        if sample.ts in existing:
            continue
        existing.add(sample.ts)
        db.add(Sample(
            trip_id=trip_id,
            ts=sample.ts,
            lat=sample.lat,
            lon=sample.lon,
            speed_mps=sample.speed_mps,
            heading_deg=sample.heading_deg,
            hdop=sample.hdop,
            ax=sample.accel.ax if sample.accel else None,
            ay=sample.accel.ay if sample.accel else None,
            az=sample.accel.az if sample.accel else None,
            screen_on=bool(sample.screen_on)
        ))
        inserted += 1

    _flush(db, "insert samples")
    return inserted


# ---------------------------------------------------------------------------
# Finalize
# ---------------------------------------------------------------------------

def get_latest_weights(db: Session) -> Optional[ScoreWeights]:
    """Most recently created score weights, or None if none are stored."""
    row = db.query(ScoreWeightSet).order_by(ScoreWeightSet.created_at.desc()).first()
    if row is None:
        return None
    return ScoreWeights.from_dict(row.version, row.weights)


def upsert_score_weights(db: Session, weights: ScoreWeights) -> ScoreWeightSet:
    row = db.get(ScoreWeightSet, weights.version)
    if row is None:
        row = ScoreWeightSet(version=weights.version, weights=weights.weights_dict())
        db.add(row)
    else:
        row.weights = weights.weights_dict()
    _flush(db, "upsert score weights")
    return row


def get_trips_to_finalize(
    db: Session,
    now: datetime,
    idle_seconds: int,
    reclaim_seconds: int
) -> List[str]:
    """Ids of trips ready to finalize.

    Open trips qualify once their last sample is older than ``idle_seconds``.
    Trips left in ``finalizing`` by a failed run are reclaimed after
    ``reclaim_seconds`` without an update.
    """
    idle_cutoff = now - timedelta(seconds=idle_seconds)
    reclaim_cutoff = now - timedelta(seconds=reclaim_seconds)

    last_sample = db.query(
        Sample.trip_id,
        func.max(Sample.ts).label("last_ts")
    ).group_by(Sample.trip_id).subquery()

    rows = db.query(Trip.id).join(
        last_sample, Trip.id == last_sample.c.trip_id
    ).filter(
        or_(
            (Trip.status == "open") & (last_sample.c.last_ts < idle_cutoff),
            (Trip.status == "finalizing") & (Trip.updated_at < reclaim_cutoff)
        )
    ).order_by(Trip.started_at.asc()).all()

    return [row.id for row in rows]


def set_trip_status(db: Session, trip: Trip, status: str):
    if status not in TRIP_STATUSES:
        raise ValueError(f"Unknown trip status: {status}")
    trip.status = status
    trip.updated_at = utcnow()
    _flush(db, f"mark trip {trip.id} {status}")


def load_samples(db: Session, trip_id: str) -> List[ProcessedSample]:
    """All samples of a trip in time order."""
    rows = db.query(Sample).filter(Sample.trip_id == trip_id).order_by(Sample.ts.asc()).all()
    samples = []
    for row in rows:
        accel = None
        if row.ax is not None and row.ay is not None and row.az is not None:
            accel = AccelSample(ax=row.ax, ay=row.ay, az=row.az)
        samples.append(ProcessedSample(
            ts=row.ts,
            lat=row.lat,
            lon=row.lon,
            speed_mps=row.speed_mps,
            heading_deg=row.heading_deg,
            hdop=row.hdop,
            accel=accel,
            screen_on=row.screen_on
        ))
    return samples


def update_trip_summary(db: Session, trip: Trip, **fields):
    """Write pipeline outputs (distance, duration, context, geometry) onto the trip row."""
    for key, value in fields.items():
        setattr(trip, key, value)
    trip.updated_at = utcnow()
    _flush(db, f"update trip {trip.id}")


def replace_trip_events(db: Session, trip_id: str, events: Sequence[DetectedEvent]) -> List[Event]:
    """Store a trip's events, replacing any from an earlier finalize."""
    db.query(Event).filter(Event.trip_id == trip_id).delete(synchronize_session=False)

    rows = []
    for event in events:
        row = Event(
            trip_id=trip_id,
            type=event.type,
            ts_start=event.ts_start,
            ts_end=event.ts_end,
            severity=event.severity,
            lat=event.lat,
            lon=event.lon,
            meta=dict(event.metadata)
        )
        db.add(row)
        rows.append(row)

    _flush(db, f"insert events for trip {trip_id}")
    return rows


def upsert_trip_features(db: Session, trip_id: str, features: TripFeatureVector) -> TripFeatures:
    row = db.get(TripFeatures, trip_id)
    if row is None:
        row = TripFeatures(trip_id=trip_id)
        db.add(row)
    for key, value in features.to_dict().items():
        setattr(row, key, value)
    _flush(db, f"upsert features for trip {trip_id}")
    return row


def upsert_trip_score(db: Session, score: TripScoreResult) -> TripScore:
    row = db.get(TripScore, score.trip_id)
    if row is None:
        row = TripScore(trip_id=score.trip_id)
        db.add(row)
    row.tss = score.tss
    row.breakdown = score.breakdown.to_dict()
    row.confidence = score.confidence
    row.weights_version = score.weights_version
    _flush(db, f"upsert score for trip {score.trip_id}")
    return row


def get_daily_score(db: Session, user_id: str, day: date) -> Optional[DriverScoreDaily]:
    return db.get(DriverScoreDaily, (user_id, day))


def get_previous_rds(db: Session, user_id: str, day: date) -> Optional[int]:
    """RDS of the most recent day before ``day``; None when the driver has no history."""
    row = db.query(DriverScoreDaily).filter(
        DriverScoreDaily.user_id == user_id,
        DriverScoreDaily.day < day
    ).order_by(DriverScoreDaily.day.desc()).first()
    return row.rds if row is not None else None


def get_day_trip_scores(db: Session, user_id: str, day: date) -> List[Tuple[int, float]]:
    """(tss, distance_km) of every scored trip the user started on ``day``, in start order."""
    day_start = datetime.combine(day, time.min)
    rows = db.query(TripScore.tss, Trip.distance_km).join(
        Trip, Trip.id == TripScore.trip_id
    ).filter(
        Trip.user_id == user_id,
        Trip.started_at >= day_start,
        Trip.started_at < day_start + timedelta(days=1)
    ).order_by(Trip.started_at.asc(), Trip.id.asc()).all()
    return [(tss, distance_km or 0.0) for tss, distance_km in rows]


def upsert_driver_score_daily(
    db: Session,
    user_id: str,
    day: date,
    rds: int,
    trips_count: int,
    total_distance_km: float
) -> DriverScoreDaily:
    """Overwrite the day's RDS and totals."""
    row = get_daily_score(db, user_id, day)
    if row is None:
        row = DriverScoreDaily(user_id=user_id, day=day)
        db.add(row)
    row.rds = rds
    row.trips_count = trips_count
    row.total_distance_km = total_distance_km
    row.updated_at = utcnow()
    _flush(db, f"upsert daily score for user {user_id}")
    return row


# ---------------------------------------------------------------------------
# Read queries
# ---------------------------------------------------------------------------

def get_user_trips(
    db: Session,
    user_id: str,
    limit: int = 50,
    offset: int = 0
) -> List[Trip]:
    """Get trips for a user, newest first."""
    return db.query(Trip).filter(
        Trip.user_id == user_id
    ).order_by(
        Trip.started_at.desc()
    ).offset(offset).limit(limit).all()


def get_trip_events(db: Session, trip_id: str) -> List[Event]:
    return db.query(Event).filter(
        Event.trip_id == trip_id
    ).order_by(Event.ts_start.asc()).all()


def get_trip_score(db: Session, trip_id: str) -> Optional[TripScore]:
    return db.get(TripScore, trip_id)


def get_user_daily_scores(db: Session, user_id: str, days: int = 30) -> List[DriverScoreDaily]:
    """Get daily scores for the last N days."""
    start_date = utcnow().date() - timedelta(days=days)

    return db.query(DriverScoreDaily).filter(
        DriverScoreDaily.user_id == user_id,
        DriverScoreDaily.day >= start_date
    ).order_by(DriverScoreDaily.day.desc()).all()


def get_event_stats(db: Session, trip_id: Optional[str] = None) -> Dict:
    """Count events by type, optionally for a single trip."""
    query = db.query(Event.type, func.count(Event.id).label("count"))
    if trip_id:
        query = query.filter(Event.trip_id == trip_id)
    event_counts = query.group_by(Event.type).all()

    by_type = {event_type: 0 for event_type in EVENT_TYPES}
    by_type.update({event_type: count for event_type, count in event_counts})

    return {
        "total_events": sum(count for _, count in event_counts),
        "by_type": by_type
    }
