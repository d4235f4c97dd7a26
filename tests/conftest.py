"""Shared test fixtures for the wellness core tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("DB_PATH", ":memory:")
    monkeypatch.setenv("CACHE_TTL_SECONDS", "86400")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from vitalcore.domains.health.domain_logic.models import (  # noqa: E402
    BloodPressureReading,
    GlucoseReading,
    HealthReadings,
    HeightReading,
    PulseReading,
    SleepReading,
    WeightReading,
)

START = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)

HEALTHY = {
    "systolic": 115.0,
    "diastolic": 75.0,
    "pulse": 68.0,
    "glucose": 92.0,
    "sleep": 7.5,
    "weight": 70.0,
    "height": 175.0,
}

UNHEALTHY = {
    "systolic": 150.0,
    "diastolic": 95.0,
    "pulse": 110.0,
    "glucose": 150.0,
    "sleep": 4.5,
    "weight": 100.0,
    "height": 170.0,
}

ALL_KINDS = ("blood_pressure", "pulse", "glucose", "sleep", "weight", "height")


def make_readings(
    days: int = 21,
    *,
    base: dict[str, float] | None = None,
    drift: dict[str, float] | None = None,
    kinds: tuple[str, ...] = ALL_KINDS,
    step_days: int = 1,
    start: datetime = START,
) -> HealthReadings:
    """One reading per kind every ``step_days`` for ``days`` days.

    ``drift`` adds a per-day increment to a base value, e.g.
    ``{"glucose": 0.5}`` for glucose rising half a mg/dL a day.
    """
    values = dict(HEALTHY)
    values.update(base or {})
    drift = drift or {}

    def at(name: str, day: int) -> float:
        return values[name] + drift.get(name, 0.0) * day

    collected: dict[str, list] = {kind: [] for kind in ALL_KINDS}
    for day in range(0, days, step_days):
        ts = start + timedelta(days=day)
        if "blood_pressure" in kinds:
            collected["blood_pressure"].append(BloodPressureReading(
                round(at("systolic", day)), round(at("diastolic", day)), ts
            ))
        if "pulse" in kinds:
            collected["pulse"].append(PulseReading(round(at("pulse", day)), ts))
        if "glucose" in kinds:
            collected["glucose"].append(GlucoseReading(at("glucose", day), ts))
        if "sleep" in kinds:
            collected["sleep"].append(SleepReading(at("sleep", day), ts))
        if "weight" in kinds:
            collected["weight"].append(WeightReading(at("weight", day), ts))
    if "height" in kinds:
        collected["height"].append(HeightReading(values["height"], start))
    return HealthReadings(**collected)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START + timedelta(days=30)) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from vitalcore.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def payload_encryptor():
    """Create a PayloadEncryptor with a fresh test key."""
    from cryptography.fernet import Fernet

    from vitalcore.core.storage.encryption import PayloadEncryptor

    return PayloadEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def memory_cache():
    from vitalcore.core.storage.cache import InMemoryAnalysisCache

    return InMemoryAnalysisCache()


@pytest.fixture
def sqlite_cache(health_db, payload_encryptor):
    """Encrypted cache backed by in-memory SQLite."""
    from vitalcore.core.storage.cache import SqliteAnalysisCache

    return SqliteAnalysisCache(health_db, payload_encryptor)


@pytest.fixture
def audit_logger(health_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from vitalcore.core.audit.logger import AuditLogger

    return AuditLogger(health_db)
