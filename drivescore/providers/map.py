"""Map matching and speed limit providers.

Only the contract, a deterministic mock and unconfigured stubs live here.
Callers must treat any provider error as "no enrichment".
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence
from ..config import ProviderSettings
from ..errors import DependencyError, NotConfiguredError
from ..preprocessing import mph_to_mps
from ..samples import ProcessedSample

logger = logging.getLogger(__name__)

# Typical posted limits by road class, in mph
ROAD_CLASS_SPEED_LIMITS_MPH = {
    "motorway": 65,
    "trunk": 55,
    "primary": 45,
    "secondary": 35,
    "residential": 25,
}
DEFAULT_SPEED_LIMIT_MPH = 30


@dataclass(frozen=True)
class MapMatchPoint:
    lat: float
    lon: float
    timestamp: datetime


@dataclass(frozen=True)
class MapMatchResult:
    lat: float
    lon: float
    confidence: float
    speed_limit_mps: Optional[float] = None
    road_class: Optional[str] = None


class MapProvider(ABC):

    @abstractmethod
    def match_to_roads(self, points: Sequence[MapMatchPoint]) -> List[MapMatchResult]:
        """Snap points onto the road network and attach road attributes."""

    @abstractmethod
    def get_speed_limit(self, lat: float, lon: float) -> Optional[float]:
        """Posted speed limit in m/s at a location, or None if unknown."""


class MockMapProvider(MapProvider):
    """Synthetic road attributes derived from the coordinates.

    The same coordinates always get the same road class, so repeated runs over
    one trip produce identical results.
    """

    confidence = 0.85

    def match_to_roads(self, points: Sequence[MapMatchPoint]) -> List[MapMatchResult]:
        results = []
        for point in points:
            road_class = self._road_class(point.lat, point.lon)
            results.append(MapMatchResult(
                lat=point.lat,
                lon=point.lon,
                speed_limit_mps=self._speed_limit_mps(road_class),
                road_class=road_class,
                confidence=self.confidence
            ))
        return results

    def get_speed_limit(self, lat: float, lon: float) -> Optional[float]:
        return self._speed_limit_mps(self._road_class(lat, lon))

    @staticmethod
    def _road_class(lat: float, lon: float) -> str:
        bucket = int(abs(lat) * 1000 + abs(lon) * 1000) % 10
        if bucket < 1:
            return "motorway"
        if bucket < 2:
            return "trunk"
        if bucket < 4:
            return "primary"
        if bucket < 7:
            return "secondary"
        return "residential"

    @staticmethod
    def _speed_limit_mps(road_class: str) -> float:
        return mph_to_mps(ROAD_CLASS_SPEED_LIMITS_MPH.get(road_class, DEFAULT_SPEED_LIMIT_MPH))


class _UnconfiguredMapProvider(MapProvider):
    name = "map"

    def __init__(self, api_key: Optional[str], timeout_s: float = 10.0):
        self.api_key = api_key
        self.timeout_s = timeout_s

    def match_to_roads(self, points: Sequence[MapMatchPoint]) -> List[MapMatchResult]:
        raise NotConfiguredError(f"{self.name} map matching is not implemented")

    def get_speed_limit(self, lat: float, lon: float) -> Optional[float]:
        raise NotConfiguredError(f"{self.name} speed limits are not implemented")


class GoogleMapProvider(_UnconfiguredMapProvider):
    """Google Maps Roads API (snapToRoads + speedLimits)."""
    name = "Google Maps Roads"


class MapboxMapProvider(_UnconfiguredMapProvider):
    """Mapbox Map Matching API v5."""
    name = "Mapbox"


class HereMapProvider(_UnconfiguredMapProvider):
    """HERE Map Matching API."""
    name = "HERE"


MAP_PROVIDERS = {
    "google": GoogleMapProvider,
    "mapbox": MapboxMapProvider,
    "here": HereMapProvider,
}


def create_map_provider(settings: ProviderSettings) -> MapProvider:
    """Build the map provider named in ``settings``."""
    name = (settings.map_provider or "mock").lower()
    if name == "mock":
        logger.info("Using mock map provider")
        return MockMapProvider()
    if name not in MAP_PROVIDERS:
        raise ValueError(f"Unknown map provider: {settings.map_provider}")
    if not settings.map_api_key:
        raise ValueError(f"Map provider '{name}' requires an API key")
    logger.info("Using %s map provider", name)
    return MAP_PROVIDERS[name](settings.map_api_key)


def match_samples(provider: MapProvider, samples: Sequence[ProcessedSample]) -> List[MapMatchResult]:
    """Run map matching for a trip, wrapping provider failures in DependencyError."""
    points = [MapMatchPoint(lat=s.lat, lon=s.lon, timestamp=s.ts) for s in samples]
    try:
        return provider.match_to_roads(points)
    except DependencyError:
        raise
    except Exception as e:
        raise DependencyError(f"Map matching failed: {e}") from e


def apply_map_matching(
    samples: Sequence[ProcessedSample],
    results: Sequence[MapMatchResult]
) -> List[ProcessedSample]:
    """Return samples enriched with speed limit, road class and match confidence."""
    if len(samples) != len(results):
        logger.warning("Sample count (%d) != match result count (%d)", len(samples), len(results))

    enriched = []
    for i, sample in enumerate(samples):
        if i < len(results):
            result = results[i]
            sample = sample.with_fields(
                speed_limit_mps=result.speed_limit_mps,
                road_class=result.road_class,
                map_match_conf=result.confidence
            )
        enriched.append(sample)
    return enriched
