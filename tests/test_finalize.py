import pytest
from datetime import datetime, timedelta
import drivescore.finalize as finalize_module
from drivescore.errors import PersistenceError
from drivescore.finalize import finalize_trip, finalize_trips, run_pipeline
from drivescore.ingest import ingest_telemetry
from drivescore.models import DriverScoreDaily, Event, Trip, TripScore, utcnow
from drivescore.persistence import get_daily_score, load_samples
from drivescore.providers.map import GoogleMapProvider, MockMapProvider
from drivescore.providers.weather import MockWeatherProvider, OpenWeatherMapProvider
from drivescore.schemas import IngestPayload
from drivescore.scoring import DEFAULT_WEIGHTS, update_rds_with_single_trip
from drivescore.seed import seed_weights
from drivescore.simulator import build_ingest_batches, generate_test_trip

TRIP_START = datetime(2025, 10, 20, 12, 0, 0)


def ingest_trip(db, samples, user_id="user-1", device_id="device-1"):
    trip_id = None
    for batch in build_ingest_batches(user_id, device_id, samples, batch_size=100):
        trip_id = ingest_telemetry(db, IngestPayload(**batch)).tripId
    return trip_id


def mock_finalize(db, **kwargs):
    return finalize_trips(db, MockMapProvider(), MockWeatherProvider(), **kwargs)


@pytest.fixture
def scripted_trip(db_session):
    seed_weights(db_session)
    samples = generate_test_trip(360, start_time=TRIP_START, seed=42)
    return ingest_trip(db_session, samples)


class TestFinalizeTrips:
    """Test the batch finalize run against a real database."""

    def test_end_to_end(self, db_session, scripted_trip):
        result = mock_finalize(db_session)

        assert result.finalized == 1
        assert result.errors == []

        trip = db_session.get(Trip, scripted_trip)
        assert trip.status == "closed"
        assert trip.distance_km > 2
        assert trip.duration_s == 359
        assert trip.ended_at == TRIP_START + timedelta(seconds=359)
        assert trip.weather["dominant_condition"] == "clear"
        assert trip.geom.startswith("LINESTRING(")

        score = db_session.get(TripScore, scripted_trip)
        assert score is not None
        assert 300 <= score.tss <= 1000
        assert score.weights_version == DEFAULT_WEIGHTS.version

        event_types = {e.type for e in db_session.query(Event).filter(Event.trip_id == scripted_trip)}
        assert "harsh_brake" in event_types
        assert "distraction" in event_types

        daily = db_session.get(DriverScoreDaily, ("user-1", TRIP_START.date()))
        assert daily.rds == update_rds_with_single_trip(None, score.tss, trip.distance_km, DEFAULT_WEIGHTS.alpha)
        assert daily.trips_count == 1

    def test_recent_trip_not_finalized(self, db_session):
        """A trip still receiving samples is left open."""
        seed_weights(db_session)
        trip_id = ingest_trip(db_session, generate_test_trip(360, start_time=utcnow(), seed=1))

        result = mock_finalize(db_session)

        assert result.finalized == 0
        assert db_session.get(Trip, trip_id).status == "open"

    def test_insufficient_trip_closed_without_score(self, db_session):
        seed_weights(db_session)
        trip_id = ingest_trip(db_session, generate_test_trip(10, start_time=TRIP_START, seed=3))

        result = mock_finalize(db_session)

        assert result.finalized == 1
        trip = db_session.get(Trip, trip_id)
        assert trip.status == "closed"
        assert trip.quality == {"insufficient_data": True}
        assert db_session.get(TripScore, trip_id) is None
        assert db_session.query(DriverScoreDaily).count() == 0

    def test_provider_failures_degrade(self, db_session, scripted_trip):
        """Broken map and weather providers still produce a score."""
        result = finalize_trips(db_session, GoogleMapProvider("k"), OpenWeatherMapProvider("k"))

        assert result.finalized == 1
        assert result.errors == []

        trip = db_session.get(Trip, scripted_trip)
        assert trip.status == "closed"
        assert trip.weather == {}
        assert trip.road_mix == {}
        assert db_session.get(TripScore, scripted_trip) is not None

    def test_missing_weights(self, db_session):
        ingest_trip(db_session, generate_test_trip(360, start_time=TRIP_START, seed=42))

        result = mock_finalize(db_session)

        assert result.finalized == 0
        assert result.errors == ["Failed to load score weights"]

    def test_nothing_to_do(self, db_session):
        seed_weights(db_session)

        result = mock_finalize(db_session)

        assert result.finalized == 0
        assert result.errors == []

    def test_failed_write_leaves_trip_for_reclaim(self, db_session, scripted_trip, monkeypatch):
        def failing_upsert(db, score):
            raise PersistenceError(f"upsert score for trip {score.trip_id}")

        monkeypatch.setattr(finalize_module, "upsert_trip_score", failing_upsert)

        result = mock_finalize(db_session)

        assert result.finalized == 0
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Trip {scripted_trip}: Failed to upsert score")

        trip = db_session.get(Trip, scripted_trip)
        assert trip.status == "finalizing"
        assert db_session.query(Event).filter(Event.trip_id == scripted_trip).count() == 0
        assert db_session.query(DriverScoreDaily).count() == 0

        # Not reclaimed until the timeout passes
        monkeypatch.undo()
        assert mock_finalize(db_session).finalized == 0

        result = mock_finalize(db_session, now=utcnow() + timedelta(minutes=20))

        assert result.finalized == 1
        assert db_session.get(Trip, scripted_trip).status == "closed"
        assert db_session.get(TripScore, scripted_trip) is not None


class TestFinalizeTrip:
    """Test single-trip finalization and the pure pipeline."""

    def test_pipeline_is_repeatable(self, db_session, scripted_trip):
        samples = load_samples(db_session, scripted_trip)

        first = run_pipeline(scripted_trip, samples, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())
        second = run_pipeline(scripted_trip, samples, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())

        assert first.score == second.score
        assert first.events == second.events
        assert first.features == second.features

    def test_trip_ends_still_count_toward_distance(self, db_session, scripted_trip):
        samples = load_samples(db_session, scripted_trip)

        result = run_pipeline(scripted_trip, samples, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())

        assert result.duration_s == 359
        assert result.features.distance_km == result.distance_km
        assert len(result.samples) == len(samples)

    def test_refinalize_replaces_events(self, db_session, scripted_trip):
        first = finalize_trip(db_session, scripted_trip, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())
        second = finalize_trip(db_session, scripted_trip, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())

        stored = db_session.query(Event).filter(Event.trip_id == scripted_trip).count()
        assert stored == len(first.events) == len(second.events)

    def test_refinalize_keeps_daily_totals(self, db_session, scripted_trip):
        finalize_trip(db_session, scripted_trip, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())
        second = finalize_trip(db_session, scripted_trip, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())

        daily = get_daily_score(db_session, "user-1", TRIP_START.date())
        assert daily.trips_count == 1
        assert daily.total_distance_km == pytest.approx(second.distance_km)
        assert daily.rds == update_rds_with_single_trip(None, second.score.tss, second.distance_km, 0.15)

    def test_next_day_blends_from_previous_day(self, db_session, scripted_trip):
        finalize_trip(db_session, scripted_trip, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())
        previous = get_daily_score(db_session, "user-1", TRIP_START.date()).rds

        next_start = TRIP_START + timedelta(days=1)
        other = ingest_trip(
            db_session,
            generate_test_trip(360, start_time=next_start, seed=7),
            device_id="device-2"
        )
        result = finalize_trip(db_session, other, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())

        daily = get_daily_score(db_session, "user-1", next_start.date())
        assert daily.trips_count == 1
        assert daily.rds == update_rds_with_single_trip(previous, result.score.tss, result.distance_km, 0.15)
        assert get_daily_score(db_session, "user-1", TRIP_START.date()).rds == previous

    def test_second_trip_blends_into_same_day(self, db_session, scripted_trip):
        first = finalize_trip(db_session, scripted_trip, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())
        baseline = get_daily_score(db_session, "user-1", TRIP_START.date()).rds

        other = ingest_trip(
            db_session,
            generate_test_trip(360, start_time=TRIP_START + timedelta(hours=2), seed=7),
            device_id="device-2"
        )
        second = finalize_trip(db_session, other, DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())

        daily = db_session.get(DriverScoreDaily, ("user-1", TRIP_START.date()))
        assert baseline == update_rds_with_single_trip(None, first.score.tss, first.distance_km, 0.15)
        assert daily.rds == update_rds_with_single_trip(baseline, second.score.tss, second.distance_km, 0.15)
        assert daily.trips_count == 2

    def test_unknown_trip(self, db_session):
        with pytest.raises(Exception, match="not found"):
            finalize_trip(db_session, "missing", DEFAULT_WEIGHTS, MockMapProvider(), MockWeatherProvider())
