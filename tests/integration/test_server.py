"""Integration tests for the wellness MCP server."""

from __future__ import annotations

import asyncio
import json
import threading
from datetime import datetime, timedelta, timezone

import pytest
from fastmcp import Client

from vitalcore.core.server.app import create_app
from vitalcore.core.storage.cache import InMemoryAnalysisCache
from vitalcore.domains.health.domain_logic.analysis_service import HealthAnalysisService


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio required)."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _text(result) -> str:
    """Extract the JSON text from a call_tool result."""
    content = result.content if hasattr(result, "content") else result
    return content[0].text


def _payload(days: int = 21) -> dict:
    start = datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
    stamps = [(start + timedelta(days=d)).isoformat() for d in range(days)]
    return {
        "blood_pressure": [{"systolic": 116, "diastolic": 74, "timestamp": ts} for ts in stamps],
        "pulse": [{"bpm": 66, "timestamp": ts} for ts in stamps],
        "glucose": [{"mg_dl": 90 + d, "timestamp": ts} for d, ts in enumerate(stamps)],
        "sleep": [{"hours": 7.5, "timestamp": ts} for ts in stamps],
        "weight": [{"kg": 72.0, "timestamp": ts} for ts in stamps],
        "height": [{"cm": 180, "timestamp": stamps[0]}],
    }


ALL_EXPECTED_TOOLS = ["health_check", "wellness_analysis", "reset_analysis_caches"]


@pytest.fixture
def client():
    """MCP client connected to a server without persistence."""
    return Client(create_app())


@pytest.fixture
def audited_client(audit_logger):
    service = HealthAnalysisService(InMemoryAnalysisCache())
    return Client(create_app(service_override=service, audit_logger_override=audit_logger))


def test_server_starts_and_lists_tools(client):
    async def _check():
        async with client:
            tool_names = [t.name for t in await client.list_tools()]
            for expected in ALL_EXPECTED_TOOLS:
                assert expected in tool_names, f"Missing tool: {expected}"
            assert "analysis_audit_summary" not in tool_names
    _run(_check())


def test_health_check_reports_memory_backend(client):
    async def _check():
        async with client:
            result = await client.call_tool("health_check", {})
            text = str(result)
            assert "ok" in text
            assert "memory" in text
    _run(_check())


def test_wellness_analysis_returns_result(client):
    async def _check():
        async with client:
            result = await client.call_tool("wellness_analysis", {"readings": _payload()})
            data = json.loads(_text(result))
            assert 0 <= data["score"] <= 100
            assert data["status"] in ("Healthy", "Needs Attention", "At Risk")
            assert data["metric_analyses"]["glucose"]["trend"] == "worsening"
            assert "glucose" in data["projections"]
            assert data["data_insufficiency_message"] is None
            assert data["log"][0].startswith("[Analysis]")
    _run(_check())


def test_wellness_analysis_empty_payload(client):
    async def _check():
        async with client:
            result = await client.call_tool("wellness_analysis", {"readings": {}})
            data = json.loads(_text(result))
            assert data["score"] == 50
            assert data["data_insufficiency_message"] == (
                "Add health readings to see your wellness score."
            )
    _run(_check())


def test_wellness_analysis_rejects_malformed_payload(client):
    async def _check():
        async with client:
            result = await client.call_tool(
                "wellness_analysis", {"readings": {"pulse": [{"bpm": "fast"}]}}
            )
            data = json.loads(_text(result))
            assert data["status"] == "error"
            assert "pulse.0" in data["message"]
    _run(_check())


def test_reset_requires_confirmation(client):
    async def _check():
        async with client:
            result = await client.call_tool("reset_analysis_caches", {})
            assert json.loads(_text(result))["status"] == "cancelled"
    _run(_check())


def test_reset_clears_caches(client):
    async def _check():
        async with client:
            await client.call_tool("wellness_analysis", {"readings": _payload()})
            result = await client.call_tool("reset_analysis_caches", {"confirm": "RESET"})
            data = json.loads(_text(result))
            assert data["status"] == "reset"
            assert data["rows_removed"] > 0
    _run(_check())


def test_reset_runs_off_the_event_loop_thread(monkeypatch):
    service = HealthAnalysisService(InMemoryAnalysisCache())
    reset_threads: list[int] = []
    original = service.reset_caches

    def _recording_reset() -> int:
        reset_threads.append(threading.get_ident())
        return original()

    monkeypatch.setattr(service, "reset_caches", _recording_reset)
    client = Client(create_app(service_override=service))

    async def _check():
        async with client:
            result = await client.call_tool("reset_analysis_caches", {"confirm": "RESET"})
            assert json.loads(_text(result))["status"] == "reset"
            return threading.get_ident()

    loop_thread = _run(_check())
    assert reset_threads and reset_threads[0] != loop_thread


def test_calls_are_audited(audited_client, audit_logger):
    async def _check():
        async with audited_client:
            await audited_client.call_tool("wellness_analysis", {"readings": _payload()})
            await audited_client.call_tool(
                "wellness_analysis", {"readings": {"sleep": [{"hours": 99, "timestamp": "x"}]}}
            )
            await audited_client.call_tool("reset_analysis_caches", {"confirm": "RESET"})

            result = await audited_client.call_tool("analysis_audit_summary", {"days": 1})
            summary = json.loads(_text(result))
            assert summary["analysis_runs"] == 2
            assert summary["cache_resets"] == 1
    _run(_check())

    runs = audit_logger.get_events(action="analysis_run")
    assert {event["status"] for event in runs} == {"success", "failure"}
    success = next(e for e in runs if e["status"] == "success")
    assert success["metadata"]["reading_counts"]["glucose"] == 21


def test_persistent_cache_with_encryption_key(monkeypatch, tmp_path):
    from cryptography.fernet import Fernet

    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
    monkeypatch.setenv("DB_PATH", str(tmp_path / "analysis.db"))
    client = Client(create_app())

    async def _check():
        async with client:
            await client.call_tool("wellness_analysis", {"readings": _payload()})
            result = await client.call_tool("health_check", {})
            text = str(result)
            assert "sqlite" in text
            tool_names = [t.name for t in await client.list_tools()]
            assert "analysis_audit_summary" in tool_names
    _run(_check())
    assert (tmp_path / "analysis.db").exists()
