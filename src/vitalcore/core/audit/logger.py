"""Audit logger: PHI-free record of analysis runs and cache resets.

Every analysis request and every cache reset issued through the server is
written to the ``audit_log`` table. No readings are stored:

* ``input_hash``: SHA-256 of canonical JSON of the request shape
  (reading counts), never the values themselves.
* ``metadata``: score, status and counts only.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from vitalcore.core.storage.database import HealthDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON.

    Returns:
        Hex-encoded digest, or empty string if ``data`` is not serializable.
    """
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'analysis_run' | 'cache_reset'
    tool_name: str = ""
    input_hash: str = ""
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes are committed immediately, under the database lock shared with
    the analysis cache. A failed write is logged and reported
    as an empty event ID; it never breaks the request being audited.

    Usage::

        audit = AuditLogger(health_db)
        audit.log_analysis(
            tool_name="wellness_analysis",
            reading_counts={"pulse": 12},
            score=84,
            status_label="Healthy",
            duration_ms=3.2,
        )
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID (empty on failure)."""
        event_id = str(uuid.uuid4())
        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":")) if event.metadata else None
        )
        try:
            with self._db.lock:
                conn = self._db.connection
                conn.execute(
                    """INSERT INTO audit_log
                       (id, timestamp, action, tool_name, input_hash,
                        duration_ms, status, error_type, metadata_json)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        event_id,
                        datetime.now(timezone.utc).isoformat(),
                        event.action,
                        event.tool_name or None,
                        event.input_hash or None,
                        event.duration_ms,
                        event.status,
                        event.error_type,
                        metadata_json,
                    ),
                )
                conn.commit()
        except sqlite3.Error:
            logger.exception("Failed to write audit event, event lost")
            return ""
        return event_id

    def log_analysis(
        self,
        *,
        tool_name: str,
        reading_counts: dict[str, int],
        score: int | None = None,
        status_label: str | None = None,
        duration_ms: float | None = None,
        error_type: str | None = None,
    ) -> str:
        """Record one analysis request.

        Args:
            tool_name: Entry point that ran the analysis.
            reading_counts: Readings per metric (hashed and stored as metadata).
            score: Final wellness score, when the run succeeded.
            status_label: Final status label, when the run succeeded.
            duration_ms: Wall time of the run.
            error_type: Exception class name when the request was rejected.
        """
        metadata: dict[str, Any] = {"reading_counts": reading_counts}
        if score is not None:
            metadata["score"] = score
        if status_label is not None:
            metadata["wellness_status"] = status_label
        return self.log_event(AuditEvent(
            action="analysis_run",
            tool_name=tool_name,
            input_hash=_hash_input(reading_counts),
            duration_ms=duration_ms,
            status="failure" if error_type else "success",
            error_type=error_type,
            metadata=metadata,
        ))

    def log_cache_reset(self, *, tool_name: str = "", rows_removed: int = 0) -> str:
        return self.log_event(AuditEvent(
            action="cache_reset",
            tool_name=tool_name,
            metadata={"rows_removed": rows_removed},
        ))

    def get_events(
        self,
        *,
        action: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        with self._db.lock:
            rows = self._db.connection.execute(query, params).fetchall()
        events = []
        for row in rows:
            event = dict(row)
            raw = event.pop("metadata_json")
            event["metadata"] = json.loads(raw) if raw else {}
            events.append(event)
        return events

    def count_events(self, *, action: str | None = None) -> int:
        with self._db.lock:
            if action:
                row = self._db.connection.execute(
                    "SELECT COUNT(*) FROM audit_log WHERE action = ?", (action,)
                ).fetchone()
            else:
                row = self._db.connection.execute("SELECT COUNT(*) FROM audit_log").fetchone()
        return row[0]
