from datetime import timedelta
from drivescore.models import Sample, utcnow
from drivescore.seed import seed_weights
from drivescore.simulator import build_ingest_batches, generate_test_trip


def post_trip(client, samples, user_id="user-1", device_id="device-1"):
    trip_id = None
    for batch in build_ingest_batches(user_id, device_id, samples):
        response = client.post("/api/ingest-telemetry", json=batch)
        assert response.status_code == 200
        trip_id = response.json()["tripId"]
    return trip_id


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_ingest_opens_trip(client):
    samples = generate_test_trip(5, seed=1)

    response = client.post("/api/ingest-telemetry", json={
        "userId": "user-1",
        "deviceId": "device-1",
        "samples": samples
    })

    assert response.status_code == 200
    data = response.json()
    assert data["tripId"]
    assert data["samplesIngested"] == 5


def test_ingest_appends_to_open_trip(client):
    samples = generate_test_trip(250, seed=1)

    batches = build_ingest_batches("user-1", "device-1", samples)
    trip_ids = {client.post("/api/ingest-telemetry", json=batch).json()["tripId"] for batch in batches}

    assert len(batches) == 3
    assert len(trip_ids) == 1


def test_ingest_retry_does_not_duplicate(client, db_session):
    batch = {"userId": "user-1", "deviceId": "device-1", "samples": generate_test_trip(20, seed=1)}

    first = client.post("/api/ingest-telemetry", json=batch).json()
    second = client.post("/api/ingest-telemetry", json=batch).json()

    assert first["tripId"] == second["tripId"]
    assert second["samplesIngested"] == 20
    assert db_session.query(Sample).filter(Sample.trip_id == first["tripId"]).count() == 20


def test_ingest_empty_samples_rejected(client):
    response = client.post("/api/ingest-telemetry", json={
        "userId": "user-1",
        "deviceId": "device-1",
        "samples": []
    })

    assert response.status_code == 400
    assert response.json()["detail"] == "samples must be a non-empty array"


def test_ingest_missing_field_rejected(client):
    response = client.post("/api/ingest-telemetry", json={"userId": "user-1", "samples": []})
    assert response.status_code == 422


def test_ingest_out_of_range_latitude_rejected(client):
    sample = generate_test_trip(1, seed=1)[0]
    sample["lat"] = 123.0

    response = client.post("/api/ingest-telemetry", json={
        "userId": "user-1",
        "deviceId": "device-1",
        "samples": [sample]
    })

    assert response.status_code == 422


def test_finalize_without_weights_reports_error(client):
    response = client.post("/api/trips-finalize")

    assert response.status_code == 200
    assert response.json() == {"finalized": 0, "errors": ["Failed to load score weights"]}


def test_finalize_and_read_back(client, db_session):
    seed_weights(db_session)
    start = utcnow() - timedelta(hours=1)
    trip_id = post_trip(client, generate_test_trip(360, start_time=start, seed=42))

    response = client.post("/api/trips-finalize")

    assert response.status_code == 200
    assert response.json() == {"finalized": 1, "errors": []}

    trips = client.get("/api/users/user-1/trips").json()
    assert len(trips) == 1
    assert trips[0]["id"] == trip_id
    assert trips[0]["status"] == "closed"

    events = client.get(f"/api/trips/{trip_id}/events").json()
    assert {"harsh_brake", "distraction"} <= {e["type"] for e in events}
    starts = [e["ts_start"] for e in events]
    assert starts == sorted(starts)

    score = client.get(f"/api/trips/{trip_id}/score").json()
    assert 300 <= score["tss"] <= 1000
    assert score["breakdown"]["clamped_score"] == score["tss"]

    scores = client.get("/api/users/user-1/scores").json()
    assert len(scores) == 1
    assert scores[0]["trips_count"] == 1

    stats = client.get("/api/events/stats", params={"trip_id": trip_id}).json()
    assert stats["total_events"] == len(events)
    assert stats["by_type"]["harsh_brake"] >= 1
    assert "speeding_20" in stats["by_type"]


def test_missing_score_is_404(client):
    response = client.get("/api/trips/no-such-trip/score")
    assert response.status_code == 404


def test_trip_listing_is_paginated(client):
    for i in range(3):
        post_trip(client, generate_test_trip(5, seed=i), device_id=f"device-{i}")

    response = client.get("/api/users/user-1/trips", params={"limit": 2})

    assert response.status_code == 200
    assert len(response.json()) == 2


def test_quality_gates_config(client):
    response = client.get("/api/config/quality-gates")

    assert response.status_code == 200
    data = response.json()
    assert data["max_hdop"] == 1.5
    assert data["min_trip_minutes"] == 5


def test_config_endpoint(client):
    data = client.get("/api/config").json()

    assert set(data) == {"quality_gates", "detection", "finalize", "scoring"}
    assert data["finalize"]["finalize_idle_seconds"] == 180
    assert data["scoring"]["cold_start_rds"] == 760
