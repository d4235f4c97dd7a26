"""MCP tools for wellness analysis and analysis-cache maintenance.

``wellness_analysis`` takes a JSON readings payload, runs the full
scoring -> trends -> correlations pipeline and returns the structured result.
``reset_analysis_caches`` wipes every cached trend, alert and trained model.
Both are audit-logged (counts and scores only, never reading values).
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from vitalcore.domains.health.tools.requests import ReadingPayloadError, parse_readings

if TYPE_CHECKING:
    from vitalcore.core.audit.logger import AuditLogger
    from vitalcore.domains.health.domain_logic.analysis_service import HealthAnalysisService

logger = logging.getLogger(__name__)

RESET_CONFIRMATION = "RESET"


def register_wellness_tools(
    mcp: FastMCP,
    service: HealthAnalysisService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register wellness analysis tools on the MCP server."""

    @mcp.tool
    async def wellness_analysis(
        ctx: Context,
        readings: dict[str, Any],
    ) -> str:
        """Compute a wellness score, risks, trends, correlation alerts and projections.

        Args:
            readings: Health readings grouped by kind. Keys: blood_pressure
                ({systolic, diastolic, timestamp}), pulse ({bpm, timestamp}),
                glucose ({mg_dl, timestamp}), sleep ({hours, timestamp}),
                weight ({kg, timestamp}), height ({cm, timestamp}).
                Timestamps are ISO-8601; naive values are read as UTC.
        """
        start_time = time.monotonic()
        try:
            parsed = parse_readings(readings)
        except ReadingPayloadError as exc:
            elapsed_ms = (time.monotonic() - start_time) * 1000
            if audit_logger is not None:
                audit_logger.log_analysis(
                    tool_name="wellness_analysis",
                    reading_counts={},
                    duration_ms=elapsed_ms,
                    error_type=type(exc).__name__,
                )
            logger.info("Rejected wellness_analysis payload: %s", exc)
            return json.dumps({"status": "error", "message": str(exc)})

        result = await service.analyze_async(parsed)
        elapsed_ms = (time.monotonic() - start_time) * 1000

        if audit_logger is not None:
            audit_logger.log_analysis(
                tool_name="wellness_analysis",
                reading_counts=parsed.counts(),
                score=result.score,
                status_label=result.status,
                duration_ms=elapsed_ms,
            )

        payload = result.to_dict()
        payload["duration_ms"] = round(elapsed_ms, 1)
        return json.dumps(payload)

    @mcp.tool
    async def reset_analysis_caches(
        ctx: Context,
        confirm: str = "",
    ) -> str:
        """Discard every cached trend, correlation alert and trained model.

        The next analysis retrains everything from the readings it is given.

        Args:
            confirm: Must be exactly 'RESET' to proceed. Safety gate.
        """
        if confirm != RESET_CONFIRMATION:
            return json.dumps({
                "status": "cancelled",
                "message": (
                    "To clear all analysis caches, call this tool with "
                    f"confirm='{RESET_CONFIRMATION}'."
                ),
            })

        start_time = time.monotonic()
        removed = await asyncio.to_thread(service.reset_caches)
        elapsed_ms = (time.monotonic() - start_time) * 1000

        if audit_logger is not None:
            audit_logger.log_cache_reset(
                tool_name="reset_analysis_caches", rows_removed=removed
            )

        return json.dumps({
            "status": "reset",
            "rows_removed": removed,
            "duration_ms": round(elapsed_ms, 1),
        })

    if audit_logger is None:
        return

    @mcp.tool
    async def analysis_audit_summary(
        ctx: Context,
        days: int = 30,
    ) -> str:
        """Review recent analysis runs and cache resets.

        The audit trail holds reading counts, scores and timings only.

        Args:
            days: Number of days to look back (default: 30).
        """
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        events = audit_logger.get_events(since=since, limit=20)

        display_events = [
            {
                "timestamp": event.get("timestamp"),
                "action": event.get("action"),
                "tool_name": event.get("tool_name"),
                "status": event.get("status"),
                "error_type": event.get("error_type"),
                "duration_ms": event.get("duration_ms"),
                "metadata": event.get("metadata"),
            }
            for event in events
        ]
        return json.dumps({
            "period_days": days,
            "analysis_runs": audit_logger.count_events(action="analysis_run"),
            "cache_resets": audit_logger.count_events(action="cache_reset"),
            "recent_events": display_events,
        })
