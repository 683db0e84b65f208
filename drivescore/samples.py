"""Value types that flow through the trip pipeline.

Raw telemetry comes in as ``TelemetrySample``. The preprocessing and
map-matching passes produce ``ProcessedSample`` instances; both are frozen, so
each pass returns a new sequence instead of editing the previous one.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional

EVENT_TYPES = (
    "harsh_brake",
    "harsh_accel",
    "harsh_corner",
    "speeding_5",
    "speeding_10",
    "speeding_20",
    "distraction",
)

TRIP_STATUSES = ("open", "finalizing", "closed")


@dataclass(frozen=True)
class AccelSample:
    ax: float
    ay: float
    az: float


@dataclass(frozen=True)
class TelemetrySample:
    """One device-reported reading. Immutable once ingested."""

    ts: datetime
    lat: float
    lon: float
    speed_mps: float
    heading_deg: Optional[float] = None
    hdop: Optional[float] = None
    accel: Optional[AccelSample] = None
    screen_on: Optional[bool] = None


@dataclass(frozen=True)
class ProcessedSample(TelemetrySample):
    """A telemetry sample plus the fields derived during finalize."""

    accel_long: Optional[float] = None
    accel_lat: Optional[float] = None
    accel_long_smooth: Optional[float] = None
    accel_lat_smooth: Optional[float] = None
    speed_limit_mps: Optional[float] = None
    road_class: Optional[str] = None
    map_match_conf: Optional[float] = None

    @classmethod
    def from_telemetry(cls, sample: TelemetrySample) -> "ProcessedSample":
        return cls(
            ts=sample.ts,
            lat=sample.lat,
            lon=sample.lon,
            speed_mps=sample.speed_mps,
            heading_deg=sample.heading_deg,
            hdop=sample.hdop,
            accel=sample.accel,
            screen_on=sample.screen_on,
        )

    def with_fields(self, **changes) -> "ProcessedSample":
        return replace(self, **changes)


@dataclass(frozen=True)
class DetectedEvent:
    """One contiguous (post-debounce) segment that crossed a detector threshold."""

    type: str
    ts_start: datetime
    severity: float
    lat: float
    lon: float
    ts_end: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_s(self) -> Optional[float]:
        if self.ts_end is None:
            return None
        return (self.ts_end - self.ts_start).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "ts_start": self.ts_start.isoformat(),
            "ts_end": self.ts_end.isoformat() if self.ts_end else None,
            "severity": self.severity,
            "lat": self.lat,
            "lon": self.lon,
            "metadata": dict(self.metadata),
        }
