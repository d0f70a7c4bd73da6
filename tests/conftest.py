"""Shared fixtures: a controllable clock and the in-memory collaborators."""

import pytest

from jackpot_crank.core.config import Settings
from jackpot_crank.services.cleanup_engine import BackgroundCleanupEngine
from jackpot_crank.services.lifecycle_engine import RoundLifecycleEngine
from jackpot_crank.services.mocks import InMemoryArchive, InMemoryLedger


class FakeClock:
    """Integer unix seconds, advanced by hand."""

    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        MOCK_LEDGER=True,
        FIREBASE_DATABASE_URL=None,
        TAPESTRY_API_KEY=None,
        HEALTH_LOG_INTERVAL_SEC=0,
        CLOSE_DELAY_SEC=5,
        CLEANUP_BACKOFF_MIN_SEC=5,
        CLEANUP_BACKOFF_MAX_SEC=60,
        PARTICIPANT_CLEANUP_BATCH=12,
        LOCK_BUFFER_SEC=3,
        STUCK_LOCKED_SEC=90,
        STUCK_WARN_REPEAT_SEC=60,
    )


@pytest.fixture
def ledger(clock):
    return InMemoryLedger(clock=clock, round_duration_sec=60)


@pytest.fixture
def archive():
    return InMemoryArchive()


@pytest.fixture
def cleanup(ledger, archive, settings, clock):
    return BackgroundCleanupEngine(ledger, archive, settings, clock=clock)


@pytest.fixture
def engine(ledger, cleanup, settings, clock):
    return RoundLifecycleEngine(ledger, cleanup, settings, clock=clock)
