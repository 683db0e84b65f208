import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Float, Boolean, Date, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# All timestamps are stored as naive UTC.
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

def new_id() -> str:
    return str(uuid.uuid4())

class Device(Base):
    __tablename__ = "devices"
    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    platform = Column(String(32), default="unknown")
    label = Column(String(255))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class Trip(Base):
    __tablename__ = "trips"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(64), nullable=False, index=True)
    device_id = Column(String(64), ForeignKey("devices.id"), nullable=False, index=True)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime)
    distance_km = Column(Float)
    duration_s = Column(Integer)
    night_fraction = Column(Float, default=0.0)
    weather = Column(JSON, default=dict)
    road_mix = Column(JSON, default=dict)
    quality = Column(JSON, default=dict)
    geom = Column(Text)  # WKT LINESTRING
    status = Column(String(16), nullable=False, default="open", index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    device = relationship("Device")

class Sample(Base):
    __tablename__ = "samples"
    trip_id = Column(String(36), ForeignKey("trips.id"), primary_key=True)
    ts = Column(DateTime, primary_key=True)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    speed_mps = Column(Float, nullable=False)
    heading_deg = Column(Float)
    hdop = Column(Float)
    ax = Column(Float)
    ay = Column(Float)
    az = Column(Float)
    screen_on = Column(Boolean, default=False)

class Event(Base):
    __tablename__ = "events"
    id = Column(Integer, primary_key=True)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False, index=True)
    type = Column(String(32), nullable=False, index=True)
    ts_start = Column(DateTime, nullable=False)
    ts_end = Column(DateTime)
    severity = Column(Float)
    lat = Column(Float)
    lon = Column(Float)
    meta = Column(JSON)
    created_at = Column(DateTime, default=utcnow)

class TripFeatures(Base):
    __tablename__ = "trip_features"
    trip_id = Column(String(36), ForeignKey("trips.id"), primary_key=True)
    distance_km = Column(Float, nullable=False)
    trip_minutes = Column(Float, nullable=False)
    harsh_brake_per_100km = Column(Float, default=0.0)
    harsh_accel_per_100km = Column(Float, default=0.0)
    harsh_corner_per_100km = Column(Float, default=0.0)
    mins_speeding_5 = Column(Float, default=0.0)
    mins_speeding_10 = Column(Float, default=0.0)
    mins_speeding_20 = Column(Float, default=0.0)
    distraction_mins = Column(Float, default=0.0)
    night_fraction = Column(Float, default=0.0)
    weather_penalty_mins = Column(Float, default=0.0)
    created_at = Column(DateTime, default=utcnow)

class TripScore(Base):
    __tablename__ = "trip_scores"
    trip_id = Column(String(36), ForeignKey("trips.id"), primary_key=True)
    tss = Column(Integer, nullable=False)
    breakdown = Column(JSON, nullable=False)
    confidence = Column(String(8), nullable=False, default="high")
    weights_version = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow)

class DriverScoreDaily(Base):
    __tablename__ = "driver_score_daily"
    user_id = Column(String(64), primary_key=True)
    day = Column(Date, primary_key=True)
    rds = Column(Integer, nullable=False)
    trips_count = Column(Integer, default=0)
    total_distance_km = Column(Float, default=0.0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class ScoreWeightSet(Base):
    __tablename__ = "score_weights"
    version = Column(String(64), primary_key=True)
    weights = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow)
