"""Key-value cache for trained analysis results and model artifacts.

The analyzers only need get/set/delete of a JSON payload stored together with
its training timestamp, plus named model artifacts. Two backends:

* ``InMemoryAnalysisCache``: process-local, used when no encryption key is
  configured and in tests.
* ``SqliteAnalysisCache``: durable, payloads encrypted with
  ``PayloadEncryptor`` before they touch disk.

Individual reads and writes are atomic. ``lock(key)`` hands out a re-entrant
per-key lock so an analyzer can hold a key across read -> retrain -> write.
``clear_all()`` removes every entry and artifact in one step.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from vitalcore.core.storage.database import HealthDatabase
from vitalcore.core.storage.encryption import EncryptionError, PayloadEncryptor
from vitalcore.core.storage.models import CacheEntry, ModelArtifact

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Raised when a cache backend cannot read or write an entry."""


class AnalysisCache(ABC):
    """Interface shared by the cache backends."""

    backend_name = "abstract"

    def __init__(self) -> None:
        self._store_lock = threading.RLock()
        self._key_locks: dict[str, threading.RLock] = {}
        self._key_locks_guard = threading.Lock()

    def lock(self, key: str) -> threading.RLock:
        """Return the lock guarding ``key`` (created on first use)."""
        with self._key_locks_guard:
            key_lock = self._key_locks.get(key)
            if key_lock is None:
                key_lock = threading.RLock()
                self._key_locks[key] = key_lock
            return key_lock

    @abstractmethod
    def get(self, key: str) -> CacheEntry | None: ...

    @abstractmethod
    def set(self, key: str, payload: Any, trained_at: datetime) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def get_artifact(self, name: str) -> ModelArtifact | None: ...

    @abstractmethod
    def put_artifact(self, name: str, artifact: dict[str, Any]) -> None: ...

    @abstractmethod
    def delete_artifact(self, name: str) -> bool: ...

    @abstractmethod
    def clear_all(self) -> int:
        """Remove every cache entry and model artifact.

        Returns:
            Number of rows (entries + artifacts) removed.
        """

    @abstractmethod
    def keys(self) -> list[str]: ...


class InMemoryAnalysisCache(AnalysisCache):
    """Process-local cache backend."""

    backend_name = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._entries: dict[str, CacheEntry] = {}
        self._artifacts: dict[str, ModelArtifact] = {}

    def get(self, key: str) -> CacheEntry | None:
        with self._store_lock:
            return self._entries.get(key)

    def set(self, key: str, payload: Any, trained_at: datetime) -> None:
        with self._store_lock:
            self._entries[key] = CacheEntry(key=key, payload=payload, trained_at=trained_at)

    def delete(self, key: str) -> bool:
        with self._store_lock:
            return self._entries.pop(key, None) is not None

    def get_artifact(self, name: str) -> ModelArtifact | None:
        with self._store_lock:
            return self._artifacts.get(name)

    def put_artifact(self, name: str, artifact: dict[str, Any]) -> None:
        with self._store_lock:
            self._artifacts[name] = ModelArtifact(
                name=name,
                artifact=dict(artifact),
                created_at=datetime.now(timezone.utc).isoformat(),
            )

    def delete_artifact(self, name: str) -> bool:
        with self._store_lock:
            return self._artifacts.pop(name, None) is not None

    def clear_all(self) -> int:
        with self._store_lock:
            count = len(self._entries) + len(self._artifacts)
            self._entries.clear()
            self._artifacts.clear()
        logger.info("Cleared in-memory analysis cache: %d rows removed", count)
        return count

    def keys(self) -> list[str]:
        with self._store_lock:
            return sorted(self._entries)


class SqliteAnalysisCache(AnalysisCache):
    """Durable, encrypted cache backend on top of ``HealthDatabase``.

    Statements run under the database's shared lock, so audit writes on the
    same connection never commit in the middle of a cache transaction.
    SQLite failures surface as ``CacheError``.

    Usage::

        db = HealthDatabase("~/.vitalcore/analysis.db")
        db.initialize()
        cache = SqliteAnalysisCache(db, PayloadEncryptor(key))
        cache.set("trend:glucose", {...}, trained_at=datetime.now(timezone.utc))
    """

    backend_name = "sqlite"

    def __init__(self, database: HealthDatabase, encryptor: PayloadEncryptor) -> None:
        super().__init__()
        self._db = database
        self._enc = encryptor
        self._store_lock = database.lock

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def get(self, key: str) -> CacheEntry | None:
        """Load an entry; unreadable rows are dropped and reported as a miss."""
        with self._store_lock:
            try:
                row = self._db.connection.execute(
                    "SELECT key, payload_enc, trained_at FROM analysis_cache WHERE key = ?",
                    (key,),
                ).fetchone()
                if row is None:
                    return None
                try:
                    payload = self._enc.open(row["payload_enc"])
                    trained_at = datetime.fromisoformat(row["trained_at"])
                except (EncryptionError, ValueError) as exc:
                    logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
                    with self._db.connection as conn:
                        conn.execute("DELETE FROM analysis_cache WHERE key = ?", (key,))
                    return None
            except sqlite3.Error as exc:
                raise CacheError(f"Cannot read cache entry {key!r}: {exc}") from exc
        return CacheEntry(key=row["key"], payload=payload, trained_at=trained_at)

    def set(self, key: str, payload: Any, trained_at: datetime) -> None:
        try:
            token = self._enc.seal(payload)
        except EncryptionError as exc:
            raise CacheError(f"Cannot cache {key!r}: {exc}") from exc
        with self._store_lock:
            try:
                with self._db.connection as conn:
                    conn.execute(
                        """INSERT INTO analysis_cache (key, payload_enc, trained_at, updated_at)
                           VALUES (?, ?, ?, ?)
                           ON CONFLICT(key) DO UPDATE SET
                               payload_enc = excluded.payload_enc,
                               trained_at = excluded.trained_at,
                               updated_at = excluded.updated_at""",
                        (key, token, trained_at.isoformat(), datetime.now(timezone.utc).isoformat()),
                    )
            except sqlite3.Error as exc:
                raise CacheError(f"Cannot cache {key!r}: {exc}") from exc
        logger.debug("Cached %s (trained_at=%s)", key, trained_at.isoformat())

    def delete(self, key: str) -> bool:
        with self._store_lock:
            try:
                with self._db.connection as conn:
                    cursor = conn.execute("DELETE FROM analysis_cache WHERE key = ?", (key,))
            except sqlite3.Error as exc:
                raise CacheError(f"Cannot delete cache entry {key!r}: {exc}") from exc
            return cursor.rowcount > 0

    def keys(self) -> list[str]:
        with self._store_lock:
            try:
                rows = self._db.connection.execute(
                    "SELECT key FROM analysis_cache ORDER BY key"
                ).fetchall()
            except sqlite3.Error as exc:
                raise CacheError(f"Cannot list cache keys: {exc}") from exc
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Model artifacts
    # ------------------------------------------------------------------

    def get_artifact(self, name: str) -> ModelArtifact | None:
        with self._store_lock:
            try:
                row = self._db.connection.execute(
                    "SELECT name, artifact_enc, created_at FROM model_artifacts WHERE name = ?",
                    (name,),
                ).fetchone()
            except sqlite3.Error as exc:
                raise CacheError(f"Cannot read model artifact {name!r}: {exc}") from exc
        if row is None:
            return None
        try:
            artifact = self._enc.open(row["artifact_enc"])
        except EncryptionError as exc:
            logger.warning("Model artifact %s is unreadable: %s", name, exc)
            return None
        return ModelArtifact(name=row["name"], artifact=artifact, created_at=row["created_at"])

    def put_artifact(self, name: str, artifact: dict[str, Any]) -> None:
        try:
            token = self._enc.seal(artifact)
        except EncryptionError as exc:
            raise CacheError(f"Cannot store model artifact {name!r}: {exc}") from exc
        with self._store_lock:
            try:
                with self._db.connection as conn:
                    conn.execute(
                        """INSERT INTO model_artifacts (name, artifact_enc, created_at)
                           VALUES (?, ?, ?)
                           ON CONFLICT(name) DO UPDATE SET
                               artifact_enc = excluded.artifact_enc,
                               created_at = excluded.created_at""",
                        (name, token, datetime.now(timezone.utc).isoformat()),
                    )
            except sqlite3.Error as exc:
                raise CacheError(f"Cannot store model artifact {name!r}: {exc}") from exc

    def delete_artifact(self, name: str) -> bool:
        with self._store_lock:
            try:
                with self._db.connection as conn:
                    cursor = conn.execute("DELETE FROM model_artifacts WHERE name = ?", (name,))
            except sqlite3.Error as exc:
                raise CacheError(f"Cannot delete model artifact {name!r}: {exc}") from exc
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear_all(self) -> int:
        """Delete every cache row and artifact in a single transaction."""
        with self._store_lock:
            try:
                with self._db.connection as conn:
                    entries = conn.execute("DELETE FROM analysis_cache").rowcount
                    artifacts = conn.execute("DELETE FROM model_artifacts").rowcount
            except sqlite3.Error as exc:
                raise CacheError(f"Failed to clear analysis cache: {exc}") from exc
        logger.warning(
            "Cleared analysis cache: %d entries, %d model artifacts removed", entries, artifacts
        )
        return entries + artifacts
