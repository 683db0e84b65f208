import math
from typing import List, Sequence
from .samples import ProcessedSample

EARTH_RADIUS_M = 6371000


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two GPS points in meters using Haversine formula."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def calculate_cumulative_distances(samples: Sequence[ProcessedSample]) -> List[float]:
    """Distance in meters from the first sample to each sample."""
    if not samples:
        return []

    distances = [0.0]
    for prev, curr in zip(samples, samples[1:]):
        distances.append(distances[-1] + haversine_distance(prev.lat, prev.lon, curr.lat, curr.lon))
    return distances


def calculate_trip_distance(samples: Sequence[ProcessedSample]) -> float:
    """Total path length of a trip in kilometers."""
    if len(samples) < 2:
        return 0.0
    return calculate_cumulative_distances(samples)[-1] / 1000.0


def exclude_trip_ends(samples: Sequence[ProcessedSample], exclude_meters: float) -> List[ProcessedSample]:
    """Drop samples within ``exclude_meters`` of the trip's start and end.

    Parking-lot manoeuvres at either end are noisy, so event detection only
    looks at the middle of the trip. Trips too short to trim are returned
    whole.
    """
    if len(samples) < 3:
        return []

    cumulative = calculate_cumulative_distances(samples)
    total = cumulative[-1]

    if total < exclude_meters * 2:
        return list(samples)

    return [
        sample for sample, dist in zip(samples, cumulative)
        if exclude_meters <= dist <= total - exclude_meters
    ]


def build_line_string(samples: Sequence[ProcessedSample]) -> str:
    """Trip path as WKT: ``LINESTRING(lon lat, ...)``."""
    if not samples:
        return "LINESTRING EMPTY"
    coords = ", ".join(f"{s.lon} {s.lat}" for s in samples)
    return f"LINESTRING({coords})"
