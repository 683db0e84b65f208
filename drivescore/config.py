import os
import logging
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Database configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///drivescore.db")

# Quality gates
MIN_MAP_MATCH_CONF = float(os.getenv("MIN_MAP_MATCH_CONF", "0.6"))
MAX_HDOP = float(os.getenv("MAX_HDOP", "1.5"))
MIN_SPEED_KMH = float(os.getenv("MIN_SPEED_KMH", "10"))

# Trip minimums for scoring
MIN_TRIP_DISTANCE_KM = float(os.getenv("MIN_TRIP_DISTANCE_KM", "2"))
MIN_TRIP_MINUTES = float(os.getenv("MIN_TRIP_MINUTES", "5"))

# Detection thresholds
HARSH_BRAKE_MPS2 = float(os.getenv("HARSH_BRAKE_MPS2", "-3.5"))
HARSH_ACCEL_MPS2 = float(os.getenv("HARSH_ACCEL_MPS2", "3.0"))
HARSH_CORNER_G = float(os.getenv("HARSH_CORNER_G", "0.35"))
HARSH_CORNER_MOTORWAY_G = float(os.getenv("HARSH_CORNER_MOTORWAY_G", "0.40"))
HARSH_BRAKE_MIN_DURATION_MS = int(os.getenv("HARSH_BRAKE_MIN_DURATION_MS", "300"))
HARSH_ACCEL_MIN_DURATION_MS = int(os.getenv("HARSH_ACCEL_MIN_DURATION_MS", "300"))
HARSH_CORNER_MIN_DURATION_MS = int(os.getenv("HARSH_CORNER_MIN_DURATION_MS", "400"))
SPEEDING_MIN_DURATION_MS = int(os.getenv("SPEEDING_MIN_DURATION_MS", "10000"))

# Finalize configuration
EXCLUDE_TRIP_END_METERS = float(os.getenv("EXCLUDE_TRIP_END_METERS", "200"))
DEBOUNCE_GAP_MS = int(os.getenv("DEBOUNCE_GAP_MS", "500"))
FINALIZE_IDLE_SECONDS = int(os.getenv("FINALIZE_IDLE_SECONDS", "180"))
FINALIZING_RECLAIM_SECONDS = int(os.getenv("FINALIZING_RECLAIM_SECONDS", "900"))

# Scoring configuration
CONFIDENCE_THRESHOLD = float(os.getenv("CONFIDENCE_THRESHOLD", "0.7"))
COLD_START_RDS = int(os.getenv("COLD_START_RDS", "760"))
DEFAULT_WEIGHTS_VERSION = os.getenv("DEFAULT_WEIGHTS_VERSION", "2025-10-19-a")

# External providers ("mock", "google", "mapbox", "here" / "mock", "openweathermap", "weatherapi")
MAP_PROVIDER = os.getenv("MAP_PROVIDER", "mock").lower()
MAP_PROVIDER_API_KEY = os.getenv("MAP_PROVIDER_API_KEY")
WEATHER_PROVIDER = os.getenv("WEATHER_PROVIDER", "mock").lower()
WEATHER_PROVIDER_API_KEY = os.getenv("WEATHER_PROVIDER_API_KEY")

# API configuration
API_DEFAULT_LIMIT = int(os.getenv("API_DEFAULT_LIMIT", "50"))
API_MAX_LIMIT = int(os.getenv("API_MAX_LIMIT", "500"))

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
LOG_FILE = os.getenv("LOG_FILE", "drivescore.log")

# Development configuration
DEBUG = os.getenv("DEBUG", "false").lower() == "true"


class QualityGates:
    """Per-sample trust thresholds and the minimums a trip needs to be scored."""

    def __init__(self,
                 min_map_match_conf: float = MIN_MAP_MATCH_CONF,
                 max_hdop: float = MAX_HDOP,
                 min_speed_kmh: float = MIN_SPEED_KMH,
                 min_trip_distance_km: float = MIN_TRIP_DISTANCE_KM,
                 min_trip_minutes: float = MIN_TRIP_MINUTES):
        self.min_map_match_conf = min_map_match_conf
        self.max_hdop = max_hdop
        self.min_speed_kmh = min_speed_kmh
        self.min_trip_distance_km = min_trip_distance_km
        self.min_trip_minutes = min_trip_minutes

    def to_dict(self) -> dict:
        return {
            "min_map_match_conf": self.min_map_match_conf,
            "max_hdop": self.max_hdop,
            "min_speed_kmh": self.min_speed_kmh,
            "min_trip_distance_km": self.min_trip_distance_km,
            "min_trip_minutes": self.min_trip_minutes
        }


class ProviderSettings:
    """Names the map and weather providers and their credentials.

    Resolved once at process start; the provider factories only ever see this
    object, never the environment.
    """

    def __init__(self,
                 map_provider: str = "mock",
                 map_api_key: Optional[str] = None,
                 weather_provider: str = "mock",
                 weather_api_key: Optional[str] = None):
        self.map_provider = map_provider
        self.map_api_key = map_api_key
        self.weather_provider = weather_provider
        self.weather_api_key = weather_api_key


class Config:
    """Configuration class with runtime overrides."""

    def __init__(self):
        self.database_url = DATABASE_URL

        # Quality gates
        self.min_map_match_conf = MIN_MAP_MATCH_CONF
        self.max_hdop = MAX_HDOP
        self.min_speed_kmh = MIN_SPEED_KMH
        self.min_trip_distance_km = MIN_TRIP_DISTANCE_KM
        self.min_trip_minutes = MIN_TRIP_MINUTES

        # Detection thresholds
        self.harsh_brake_mps2 = HARSH_BRAKE_MPS2
        self.harsh_accel_mps2 = HARSH_ACCEL_MPS2
        self.harsh_corner_g = HARSH_CORNER_G
        self.harsh_corner_motorway_g = HARSH_CORNER_MOTORWAY_G

        # Finalize
        self.exclude_trip_end_meters = EXCLUDE_TRIP_END_METERS
        self.debounce_gap_ms = DEBOUNCE_GAP_MS
        self.finalize_idle_seconds = FINALIZE_IDLE_SECONDS
        self.finalizing_reclaim_seconds = FINALIZING_RECLAIM_SECONDS

        # Scoring
        self.confidence_threshold = CONFIDENCE_THRESHOLD
        self.cold_start_rds = COLD_START_RDS
        self.default_weights_version = DEFAULT_WEIGHTS_VERSION

        # Providers
        self.map_provider = MAP_PROVIDER
        self.map_provider_api_key = MAP_PROVIDER_API_KEY
        self.weather_provider = WEATHER_PROVIDER
        self.weather_provider_api_key = WEATHER_PROVIDER_API_KEY

        # API settings
        self.api_default_limit = API_DEFAULT_LIMIT
        self.api_max_limit = API_MAX_LIMIT

        # Logging
        self.log_level = LOG_LEVEL
        self.log_format = LOG_FORMAT
        self.log_file = LOG_FILE

        # Development
        self.debug = DEBUG

    def get_quality_gates(self) -> QualityGates:
        """Get quality gates built from the current configuration."""
        return QualityGates(
            min_map_match_conf=self.min_map_match_conf,
            max_hdop=self.max_hdop,
            min_speed_kmh=self.min_speed_kmh,
            min_trip_distance_km=self.min_trip_distance_km,
            min_trip_minutes=self.min_trip_minutes
        )

    def get_provider_settings(self) -> ProviderSettings:
        """Get provider selection as a settings object."""
        return ProviderSettings(
            map_provider=self.map_provider,
            map_api_key=self.map_provider_api_key,
            weather_provider=self.weather_provider,
            weather_api_key=self.weather_provider_api_key
        )

    def get_detection_config(self) -> dict:
        """Get detection configuration as dictionary."""
        return {
            "harsh_brake_mps2": self.harsh_brake_mps2,
            "harsh_accel_mps2": self.harsh_accel_mps2,
            "harsh_corner_g": self.harsh_corner_g,
            "harsh_corner_motorway_g": self.harsh_corner_motorway_g
        }

    def get_finalize_config(self) -> dict:
        """Get finalize configuration as dictionary."""
        return {
            "exclude_trip_end_meters": self.exclude_trip_end_meters,
            "debounce_gap_ms": self.debounce_gap_ms,
            "finalize_idle_seconds": self.finalize_idle_seconds,
            "finalizing_reclaim_seconds": self.finalizing_reclaim_seconds
        }

    def get_scoring_config(self) -> dict:
        """Get scoring configuration as dictionary."""
        return {
            "confidence_threshold": self.confidence_threshold,
            "cold_start_rds": self.cold_start_rds,
            "default_weights_version": self.default_weights_version
        }

# Global configuration instance
config = Config()

def setup_logging():
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format=config.log_format,
        handlers=[
            logging.FileHandler(config.log_file),
            logging.StreamHandler()
        ]
    )

    # Set specific logger levels
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if config.debug else logging.WARNING)

    return logging.getLogger(__name__)

# Initialize logger
logger = setup_logging()
