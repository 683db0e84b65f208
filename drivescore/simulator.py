"""Synthetic and replayed telemetry for exercising ingest and finalize.

Usage: python -m drivescore.simulator USER_ID DEVICE_ID [--duration 360] [--csv tracks.csv]
"""

import argparse
import logging
import math
import random
import pandas as pd
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from .db import init_db, session_scope
from .geo import haversine_distance
from .ingest import ingest_telemetry
from .models import utcnow
from .schemas import IngestPayload

logger = logging.getLogger(__name__)

# Philadelphia
START_LAT = 39.9526
START_LON = -75.1652

DEGREES_PER_METER = 1 / 111000

# Scripted events: (first second, last second)
HARSH_BRAKE_WINDOW = (30, 33)
HARSH_ACCEL_WINDOW = (60, 63)
HARSH_CORNER_WINDOW = (90, 93)
DISTRACTION_WINDOW = (120, 140)

CSV_COLUMN_ALIASES = {
    "time": "ts",
    "timestamp": "ts",
    "latitude": "lat",
    "longitude": "lon",
}


def _in_window(t: int, window) -> bool:
    return window[0] <= t <= window[1]


def generate_test_trip(
    duration_s: int = 360,
    start_time: Optional[datetime] = None,
    start_lat: float = START_LAT,
    start_lon: float = START_LON,
    seed: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Generate one sample per second for a trip heading east.

    The trip ramps up to cruise speed, brakes hard at 30 s, accelerates hard
    at 60 s, corners hard at 90 s and has the screen on from 120 s to 140 s.
    Samples are ingest payload dicts. The same seed gives the same trip.
    """
    rng = random.Random(seed)
    start_time = start_time or utcnow()

    samples = []
    lat = start_lat
    lon = start_lon
    heading = 90.0
    speed = 0.0

    for t in range(duration_s):
        # Speed profile: ramp up, cruise with variation, ramp down
        if t < 10:
            speed = (t / 10) * 15
        elif t > duration_s - 10:
            speed = ((duration_s - t) / 10) * 15
        else:
            speed = 13 + math.sin(t / 20) * 2

        accel_long = 0.0
        accel_lat = 0.0
        if _in_window(t, HARSH_BRAKE_WINDOW):
            accel_long = -5.0
            speed = max(0.0, speed - 2)
        if _in_window(t, HARSH_ACCEL_WINDOW):
            accel_long = 4.5
            speed = min(20.0, speed + 2)
        if _in_window(t, HARSH_CORNER_WINDOW):
            accel_lat = 4.5
            heading += 10

        lat += speed * math.cos(math.radians(heading)) * DEGREES_PER_METER
        lon += speed * math.sin(math.radians(heading)) * DEGREES_PER_METER / math.cos(math.radians(lat))

        heading += (rng.random() - 0.5) * 2

        # Device axes are the road-frame signal rotated back by the heading
        h = math.radians(heading)
        ax = accel_long * math.cos(h) - accel_lat * math.sin(h)
        ay = accel_long * math.sin(h) + accel_lat * math.cos(h)

        samples.append({
            "ts": (start_time + timedelta(seconds=t)).isoformat(),
            "lat": lat,
            "lon": lon,
            "speed_mps": speed,
            "heading_deg": heading % 360,
            "hdop": 0.6 + rng.random() * 0.4,
            "accel": {
                "ax": ax + (rng.random() - 0.5) * 0.2,
                "ay": ay + (rng.random() - 0.5) * 0.2,
                "az": 9.8 + (rng.random() - 0.5) * 0.3,
            },
            "screen_on": _in_window(t, DISTRACTION_WINDOW),
        })

    return samples


def _optional(row, column: str):
    if column not in row or pd.isna(row[column]):
        return None
    return float(row[column])


def load_samples_csv(csv_path: str) -> List[Dict[str, Any]]:
    """Replay a recorded track as ingest payload samples.

    Accepts ``ts, lat, lon`` (or ``time, latitude, longitude``) plus any of
    ``speed_mps, heading_deg, hdop, ax, ay, az, screen_on``. Without a speed
    column the speed is derived from consecutive positions.
    """
    df = pd.read_csv(csv_path)
    df = df.rename(columns={k: v for k, v in CSV_COLUMN_ALIASES.items() if k in df.columns})
    df["ts"] = pd.to_datetime(df["ts"], utc=True).dt.tz_localize(None)
    df = df.sort_values("ts").reset_index(drop=True)

    if "speed_mps" not in df.columns:
        speeds = [0.0]
        for i in range(1, len(df)):
            prev, curr = df.iloc[i - 1], df.iloc[i]
            dt = (curr["ts"] - prev["ts"]).total_seconds()
            distance_m = haversine_distance(prev["lat"], prev["lon"], curr["lat"], curr["lon"])
            speeds.append(distance_m / dt if dt > 0 else 0.0)
        df["speed_mps"] = speeds

    samples = []
    for _, row in df.iterrows():
        sample = {
            "ts": row["ts"].to_pydatetime().isoformat(),
            "lat": float(row["lat"]),
            "lon": float(row["lon"]),
            "speed_mps": float(row["speed_mps"]),
            "heading_deg": _optional(row, "heading_deg"),
            "hdop": _optional(row, "hdop"),
            "screen_on": bool(row["screen_on"]) if "screen_on" in row and not pd.isna(row["screen_on"]) else None,
        }
        ax, ay, az = _optional(row, "ax"), _optional(row, "ay"), _optional(row, "az")
        if ax is not None and ay is not None and az is not None:
            sample["accel"] = {"ax": ax, "ay": ay, "az": az}
        samples.append(sample)

    logger.info("Loaded %d samples from %s", len(samples), csv_path)
    return samples


def build_ingest_batches(
    user_id: str,
    device_id: str,
    samples: List[Dict[str, Any]],
    batch_size: int = 100
) -> List[Dict[str, Any]]:
    """Split samples into ingest payloads the way a phone uploads them."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [
        {"userId": user_id, "deviceId": device_id, "samples": samples[i:i + batch_size]}
        for i in range(0, len(samples), batch_size)
    ]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Ingest a synthetic or recorded trip")
    parser.add_argument("user_id")
    parser.add_argument("device_id")
    parser.add_argument("--duration", type=int, default=360, help="Synthetic trip length in seconds")
    parser.add_argument("--csv", help="Replay samples from a CSV file instead")
    parser.add_argument("--batch-size", type=int, default=100)
    parser.add_argument("--seed", type=int)
    args = parser.parse_args(argv)

    if args.csv:
        samples = load_samples_csv(args.csv)
    else:
        samples = generate_test_trip(args.duration, seed=args.seed)

    init_db()
    trip_id = None
    with session_scope() as db:
        for batch in build_ingest_batches(args.user_id, args.device_id, samples, args.batch_size):
            trip_id = ingest_telemetry(db, IngestPayload(**batch)).tripId

    print(f"Ingested {len(samples)} samples into trip {trip_id}")
    print("Trigger finalization with: curl -X POST http://localhost:8000/api/trips-finalize")


if __name__ == "__main__":
    main()
