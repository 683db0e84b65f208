"""Historical weather providers and the weather penalty."""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence
from ..config import ProviderSettings
from ..errors import DependencyError, NotConfiguredError

logger = logging.getLogger(__name__)

# Penalty minutes per trip minute
PENALTY_FACTORS = {
    "rain": 0.5,
    "snow": 1.0,
    "ice": 1.0,
    "fog": 0.3,
}


@dataclass(frozen=True)
class WeatherRequest:
    lat: float
    lon: float
    start_time: datetime
    end_time: datetime


@dataclass(frozen=True)
class WeatherCondition:
    timestamp: datetime
    condition: str
    temperature_c: Optional[float] = None
    precipitation_mm: Optional[float] = None
    visibility_m: Optional[float] = None


class WeatherProvider(ABC):

    @abstractmethod
    def get_historical_weather(self, request: WeatherRequest) -> List[WeatherCondition]:
        """Weather readings covering the request window."""


class MockWeatherProvider(WeatherProvider):
    """Reports clear weather for the whole window."""

    def get_historical_weather(self, request: WeatherRequest) -> List[WeatherCondition]:
        return [WeatherCondition(
            timestamp=request.start_time,
            condition="clear",
            temperature_c=20.0,
            precipitation_mm=0.0,
            visibility_m=10000.0
        )]


class _UnconfiguredWeatherProvider(WeatherProvider):
    name = "weather"

    def __init__(self, api_key: Optional[str], timeout_s: float = 10.0):
        self.api_key = api_key
        self.timeout_s = timeout_s

    def get_historical_weather(self, request: WeatherRequest) -> List[WeatherCondition]:
        raise NotConfiguredError(f"{self.name} historical weather is not implemented")


class OpenWeatherMapProvider(_UnconfiguredWeatherProvider):
    """OpenWeatherMap One Call 3.0 timemachine."""
    name = "OpenWeatherMap"


class WeatherApiProvider(_UnconfiguredWeatherProvider):
    """WeatherAPI.com history endpoint."""
    name = "WeatherAPI"


WEATHER_PROVIDERS = {
    "openweathermap": OpenWeatherMapProvider,
    "weatherapi": WeatherApiProvider,
}


def create_weather_provider(settings: ProviderSettings) -> WeatherProvider:
    """Build the weather provider named in ``settings``."""
    name = (settings.weather_provider or "mock").lower()
    if name == "mock":
        logger.info("Using mock weather provider")
        return MockWeatherProvider()
    if name not in WEATHER_PROVIDERS:
        raise ValueError(f"Unknown weather provider: {settings.weather_provider}")
    if not settings.weather_api_key:
        raise ValueError(f"Weather provider '{name}' requires an API key")
    logger.info("Using %s weather provider", name)
    return WEATHER_PROVIDERS[name](settings.weather_api_key)


def fetch_trip_weather(provider: WeatherProvider, request: WeatherRequest) -> List[WeatherCondition]:
    """Fetch weather for a trip window, wrapping provider failures in DependencyError."""
    try:
        return provider.get_historical_weather(request)
    except DependencyError:
        raise
    except Exception as e:
        raise DependencyError(f"Weather lookup failed: {e}") from e


def calculate_weather_penalty(conditions: Sequence[WeatherCondition], trip_minutes: float) -> float:
    """Penalty minutes: rain 0.5x, snow/ice 1.0x, fog 0.3x the trip duration.

    Every reading adds its own penalty, so a trip with several rainy readings
    is penalized once per reading.
    """
    penalty = 0.0
    for condition in conditions:
        penalty += trip_minutes * PENALTY_FACTORS.get(condition.condition, 0.0)
    return penalty


def get_dominant_weather_condition(conditions: Sequence[WeatherCondition]) -> str:
    """Most frequent condition; ties go to the first one seen."""
    if not conditions:
        return "unknown"
    counts = Counter(c.condition for c in conditions)
    return counts.most_common(1)[0][0]
