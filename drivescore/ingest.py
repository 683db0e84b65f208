import logging
from datetime import datetime, timezone
from typing import List
from sqlalchemy.orm import Session
from .errors import ValidationError
from .persistence import commit, create_trip, find_open_trip, insert_samples, upsert_device
from .samples import AccelSample, TelemetrySample
from .schemas import IngestPayload, IngestResponse, TelemetrySamplePayload

logger = logging.getLogger(__name__)


def to_naive_utc(ts: datetime) -> datetime:
    """Timestamps are stored as naive UTC; aware values are converted first."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


def to_telemetry_samples(samples: List[TelemetrySamplePayload]) -> List[TelemetrySample]:
    result = []
    for sample in samples:
        accel = None
        if sample.accel is not None:
            accel = AccelSample(ax=sample.accel.ax, ay=sample.accel.ay, az=sample.accel.az)
        result.append(TelemetrySample(
            ts=to_naive_utc(sample.ts),
            lat=sample.lat,
            lon=sample.lon,
            speed_mps=sample.speed_mps,
            heading_deg=sample.heading_deg,
            hdop=sample.hdop,
            accel=accel,
            screen_on=sample.screen_on
        ))
    return result


def ingest_telemetry(db: Session, payload: IngestPayload) -> IngestResponse:
    """Append a batch of samples to the device's open trip.

    A new trip starting at the first sample is opened when the device has
    none. Samples already stored for the trip are skipped, so a retried batch
    does not duplicate rows.

    Two concurrent batches for a device with no open trip can each create a
    trip; nothing here serializes the lookup and the insert.
    """
    if not payload.userId or not payload.deviceId:
        raise ValidationError("Invalid payload. Required: userId, deviceId, samples")
    if not payload.samples:
        raise ValidationError("samples must be a non-empty array")

    samples = to_telemetry_samples(payload.samples)

    upsert_device(db, payload.deviceId, payload.userId)

    trip = find_open_trip(db, payload.deviceId)
    if trip is None:
        trip = create_trip(db, payload.userId, payload.deviceId, samples[0].ts)
        logger.info("Opened trip %s for device %s", trip.id, payload.deviceId)

    inserted = insert_samples(db, trip.id, samples)
    commit(db, "ingest telemetry")

    logger.info("Ingested %d/%d samples into trip %s", inserted, len(samples), trip.id)
    return IngestResponse(tripId=trip.id, samplesIngested=len(samples))
