import pytest
from datetime import datetime, timedelta
from drivescore.config import ProviderSettings
from drivescore.errors import DependencyError, NotConfiguredError
from drivescore.preprocessing import mph_to_mps
from drivescore.providers.map import (
    GoogleMapProvider,
    MapMatchPoint,
    MapMatchResult,
    MapProvider,
    MockMapProvider,
    apply_map_matching,
    create_map_provider,
    match_samples
)
from drivescore.providers.weather import (
    MockWeatherProvider,
    OpenWeatherMapProvider,
    WeatherCondition,
    WeatherProvider,
    WeatherRequest,
    calculate_weather_penalty,
    create_weather_provider,
    fetch_trip_weather,
    get_dominant_weather_condition
)
from drivescore.samples import ProcessedSample

START = datetime(2025, 10, 20, 12, 0, 0)


def samples(count):
    return [
        ProcessedSample(ts=START + timedelta(seconds=i), lat=39.95 + i * 0.001, lon=-75.16, speed_mps=15.0)
        for i in range(count)
    ]


def condition(name):
    return WeatherCondition(timestamp=START, condition=name)


class BrokenMapProvider(MapProvider):
    def match_to_roads(self, points):
        raise ConnectionError("connection reset")

    def get_speed_limit(self, lat, lon):
        raise ConnectionError("connection reset")


class BrokenWeatherProvider(WeatherProvider):
    def get_historical_weather(self, request):
        raise TimeoutError("timed out")


class TestMockMapProvider:
    """Test the deterministic mock."""

    def setup_method(self):
        self.provider = MockMapProvider()

    def test_one_result_per_point(self):
        points = [MapMatchPoint(lat=s.lat, lon=s.lon, timestamp=s.ts) for s in samples(5)]

        results = self.provider.match_to_roads(points)

        assert len(results) == 5
        for result in results:
            assert result.confidence == 0.85
            assert result.road_class in {"motorway", "trunk", "primary", "secondary", "residential"}
            assert result.speed_limit_mps > 0

    def test_same_coordinates_same_answer(self):
        points = [MapMatchPoint(lat=s.lat, lon=s.lon, timestamp=s.ts) for s in samples(5)]

        assert self.provider.match_to_roads(points) == self.provider.match_to_roads(points)

    def test_speed_limit_matches_road_class(self):
        results = self.provider.match_to_roads([MapMatchPoint(lat=39.95, lon=-75.16, timestamp=START)])

        assert self.provider.get_speed_limit(39.95, -75.16) == results[0].speed_limit_mps

    def test_residential_limit(self):
        assert MockMapProvider._speed_limit_mps("residential") == pytest.approx(mph_to_mps(25))


class TestMapProviderSelection:
    """Test building providers from settings."""

    def test_default_is_mock(self):
        assert isinstance(create_map_provider(ProviderSettings()), MockMapProvider)

    def test_named_provider_needs_key(self):
        with pytest.raises(ValueError):
            create_map_provider(ProviderSettings(map_provider="google"))

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError):
            create_map_provider(ProviderSettings(map_provider="carrier-pigeon"))

    def test_unconfigured_provider_raises_not_configured(self):
        provider = create_map_provider(ProviderSettings(map_provider="google", map_api_key="k"))

        assert isinstance(provider, GoogleMapProvider)
        with pytest.raises(NotImplementedError):
            provider.get_speed_limit(39.95, -75.16)


class TestMapMatching:
    """Test applying match results to samples."""

    def test_apply_results(self):
        trip = samples(2)
        results = [
            MapMatchResult(lat=0, lon=0, confidence=0.9, speed_limit_mps=13.4, road_class="primary"),
            MapMatchResult(lat=0, lon=0, confidence=0.4, speed_limit_mps=None, road_class=None),
        ]

        enriched = apply_map_matching(trip, results)

        assert enriched[0].road_class == "primary"
        assert enriched[0].speed_limit_mps == 13.4
        assert enriched[0].map_match_conf == 0.9
        assert enriched[1].map_match_conf == 0.4
        # positions are not snapped
        assert enriched[0].lat == trip[0].lat
        assert trip[0].road_class is None

    def test_short_result_list_leaves_rest_unmatched(self):
        trip = samples(3)
        results = [MapMatchResult(lat=0, lon=0, confidence=0.9, road_class="trunk")]

        enriched = apply_map_matching(trip, results)

        assert len(enriched) == 3
        assert enriched[0].road_class == "trunk"
        assert enriched[2].road_class is None

    def test_provider_errors_become_dependency_errors(self):
        with pytest.raises(DependencyError):
            match_samples(BrokenMapProvider(), samples(3))

    def test_not_configured_is_a_dependency_error(self):
        with pytest.raises(DependencyError):
            match_samples(GoogleMapProvider("k"), samples(3))


class TestWeather:
    """Test weather providers and the penalty."""

    def setup_method(self):
        self.request = WeatherRequest(lat=39.95, lon=-75.16, start_time=START, end_time=START + timedelta(minutes=20))

    def test_mock_reports_clear(self):
        conditions = MockWeatherProvider().get_historical_weather(self.request)

        assert [c.condition for c in conditions] == ["clear"]
        assert calculate_weather_penalty(conditions, 20) == 0.0

    def test_penalty_factors(self):
        assert calculate_weather_penalty([condition("rain")], 20) == 10.0
        assert calculate_weather_penalty([condition("snow")], 20) == 20.0
        assert calculate_weather_penalty([condition("ice")], 20) == 20.0
        assert calculate_weather_penalty([condition("fog")], 20) == pytest.approx(6.0)
        assert calculate_weather_penalty([condition("other")], 20) == 0.0

    def test_penalty_sums_every_reading(self):
        """Two rainy readings for one trip are both counted."""
        assert calculate_weather_penalty([condition("rain"), condition("rain")], 20) == 20.0

    def test_dominant_condition(self):
        conditions = [condition("rain"), condition("clear"), condition("rain")]
        assert get_dominant_weather_condition(conditions) == "rain"

    def test_dominant_condition_empty(self):
        assert get_dominant_weather_condition([]) == "unknown"

    def test_default_is_mock(self):
        assert isinstance(create_weather_provider(ProviderSettings()), MockWeatherProvider)

    def test_named_provider_needs_key(self):
        with pytest.raises(ValueError):
            create_weather_provider(ProviderSettings(weather_provider="openweathermap"))

    def test_provider_errors_become_dependency_errors(self):
        with pytest.raises(DependencyError):
            fetch_trip_weather(BrokenWeatherProvider(), self.request)

    def test_unconfigured_provider(self):
        with pytest.raises(NotConfiguredError):
            fetch_trip_weather(OpenWeatherMapProvider("k"), self.request)
