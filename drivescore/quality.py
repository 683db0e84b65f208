from .config import QualityGates
from .preprocessing import mps_to_kmh
from .samples import ProcessedSample

# Default gates built from the environment
DEFAULT_QUALITY_GATES = QualityGates()


def passes_position_checks(sample: ProcessedSample, gates: QualityGates) -> bool:
    """HDOP and map-match confidence checks. Missing values pass."""
    if sample.hdop is not None and sample.hdop > gates.max_hdop:
        return False
    if sample.map_match_conf is not None and sample.map_match_conf < gates.min_map_match_conf:
        return False
    return True


def passes_quality_gates(sample: ProcessedSample, gates: QualityGates) -> bool:
    """Check whether a sample is trustworthy enough for event detection."""
    speed_kmh = mps_to_kmh(sample.speed_mps)
    if speed_kmh < gates.min_speed_kmh:
        return False
    return passes_position_checks(sample, gates)
