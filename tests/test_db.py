import pytest
import drivescore.db as db_module
from drivescore.db import session_scope
from drivescore.persistence import get_latest_weights
from drivescore.seed import seed_weights
from drivescore.scoring import DEFAULT_WEIGHTS


class FakeSession:
    instances = []

    def __init__(self):
        self.rolled_back = False
        self.closed = False
        FakeSession.instances.append(self)

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


class TestSessionScope:
    """Test the command-line session helper."""

    def setup_method(self):
        FakeSession.instances = []

    def test_closes_session(self, monkeypatch):
        monkeypatch.setattr(db_module, "SessionLocal", FakeSession)

        with session_scope():
            pass

        session = FakeSession.instances[0]
        assert session.closed
        assert not session.rolled_back

    def test_rolls_back_on_error(self, monkeypatch):
        monkeypatch.setattr(db_module, "SessionLocal", FakeSession)

        with pytest.raises(RuntimeError):
            with session_scope():
                raise RuntimeError("boom")

        session = FakeSession.instances[0]
        assert session.rolled_back
        assert session.closed


class TestSeedWeights:
    """Test seeding the default weights."""

    def test_seed_then_load(self, db_session):
        seed_weights(db_session)
        assert get_latest_weights(db_session) == DEFAULT_WEIGHTS

    def test_reseed_is_an_upsert(self, db_session):
        seed_weights(db_session)
        seed_weights(db_session)
        assert get_latest_weights(db_session) == DEFAULT_WEIGHTS
