"""Data models for the analysis cache layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload plus the time the model behind it was trained."""

    key: str
    payload: Any  # JSON-serializable (dict for trends, list for alerts)
    trained_at: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.trained_at).total_seconds()

    def is_fresh(self, now: datetime, ttl_seconds: float) -> bool:
        """Valid strictly before ``trained_at + ttl_seconds``."""
        return self.age_seconds(now) < ttl_seconds


@dataclass(frozen=True)
class ModelArtifact:
    """Serialized parameters of a trained model."""

    name: str  # e.g. 'trend:glucose', 'correlation:composite'
    artifact: dict[str, Any]
    created_at: str = ""
