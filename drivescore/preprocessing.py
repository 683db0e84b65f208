import math
from datetime import datetime
from typing import List, Sequence, Tuple
from .samples import ProcessedSample

STANDARD_GRAVITY = 9.80665
MPS_TO_KMH = 3.6
MPS_TO_MPH = 2.23694
MPH_TO_MPS = 0.44704


def low_pass_filter(values: Sequence[float], window_size: int = 3) -> List[float]:
    """Centered moving average. The window is clipped at the ends, not padded."""
    if not values:
        return []
    if window_size <= 1:
        return list(values)

    half_window = window_size // 2
    result = []
    for i in range(len(values)):
        start = max(0, i - half_window)
        end = min(len(values), i + half_window + 1)
        window = values[start:end]
        result.append(sum(window) / len(window))
    return result


def project_to_road_frame(ax: float, ay: float, heading_deg: float) -> Tuple[float, float]:
    """Rotate horizontal device acceleration into (longitudinal, lateral) by heading.

    Assumes the device lies roughly flat; heading 0 is north, 90 is east.
    """
    heading_rad = math.radians(heading_deg)
    accel_long = ax * math.cos(heading_rad) + ay * math.sin(heading_rad)
    accel_lat = -ax * math.sin(heading_rad) + ay * math.cos(heading_rad)
    return accel_long, accel_lat


def preprocess_samples(samples: Sequence[ProcessedSample], window_size: int = 3) -> List[ProcessedSample]:
    """Smooth the x/y axes and project them into the road frame.

    Returns new samples. The projection is computed from the smoothed axes, so
    the raw and smoothed road-frame fields carry the same values.
    """
    ax_values = [s.accel.ax if s.accel is not None else 0.0 for s in samples]
    ay_values = [s.accel.ay if s.accel is not None else 0.0 for s in samples]

    ax_smooth = low_pass_filter(ax_values, window_size)
    ay_smooth = low_pass_filter(ay_values, window_size)

    processed = []
    for i, sample in enumerate(samples):
        heading = sample.heading_deg if sample.heading_deg is not None else 0.0
        accel_long, accel_lat = project_to_road_frame(ax_smooth[i], ay_smooth[i], heading)
        processed.append(sample.with_fields(
            accel_long=accel_long,
            accel_lat=accel_lat,
            accel_long_smooth=accel_long,
            accel_lat_smooth=accel_lat
        ))
    return processed


def mps_to_kmh(mps: float) -> float:
    return mps * MPS_TO_KMH


def mps_to_mph(mps: float) -> float:
    return mps * MPS_TO_MPH


def mph_to_mps(mph: float) -> float:
    return mph * MPH_TO_MPS


def mps2_to_g(mps2: float) -> float:
    return mps2 / STANDARD_GRAVITY


def time_diff_seconds(ts1: datetime, ts2: datetime) -> float:
    """Absolute difference between two timestamps in seconds."""
    return abs((ts2 - ts1).total_seconds())


def time_diff_ms(ts1: datetime, ts2: datetime) -> float:
    """Absolute difference between two timestamps in milliseconds."""
    return time_diff_seconds(ts1, ts2) * 1000.0
