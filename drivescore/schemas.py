from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class AccelPayload(BaseModel):
    ax: float
    ay: float
    az: float


class TelemetrySamplePayload(BaseModel):
    ts: datetime
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    speed_mps: float = Field(..., ge=0)
    heading_deg: Optional[float] = None
    hdop: Optional[float] = None
    accel: Optional[AccelPayload] = None
    screen_on: Optional[bool] = None


class IngestPayload(BaseModel):
    userId: str
    deviceId: str
    samples: List[TelemetrySamplePayload]


class IngestResponse(BaseModel):
    tripId: str
    samplesIngested: int


class FinalizeResponse(BaseModel):
    finalized: int = 0
    errors: List[str] = Field(default_factory=list)
