"""Vitalcore wellness MCP server — application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from vitalcore.core.audit.logger import AuditLogger
from vitalcore.core.config.settings import get_settings
from vitalcore.core.storage.cache import (
    AnalysisCache,
    InMemoryAnalysisCache,
    SqliteAnalysisCache,
)
from vitalcore.core.storage.database import DatabaseError, HealthDatabase
from vitalcore.core.storage.encryption import EncryptionError, PayloadEncryptor
from vitalcore.domains.health.domain_logic.analysis_service import HealthAnalysisService
from vitalcore.domains.health.tools.wellness_tools import register_wellness_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "Vitalcore Wellness"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    service_override: HealthAnalysisService | None = None,
    audit_logger_override: AuditLogger | None = None,
) -> FastMCP:
    """Create and configure the wellness MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the encrypted SQLite cache when an encryption key is configured,
       otherwise falls back to an in-memory cache
    3. Builds the analysis service on top of the cache
    4. Registers all tools
    """
    settings = get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Wellness analytics server. Scores personal health readings "
            "(blood pressure, pulse, glucose, sleep, weight/height), detects "
            "multi-week trends, flags strongly correlated metrics and projects "
            "scores one week, one month and three months ahead."
        ),
    )

    # --- Cache + audit storage ---
    cache: AnalysisCache | None = None
    audit_logger = audit_logger_override
    if service_override is None:
        if settings.encryption_key:
            try:
                encryptor = PayloadEncryptor(settings.encryption_key)
                health_db = HealthDatabase(settings.db_path)
                health_db.initialize()
                cache = SqliteAnalysisCache(health_db, encryptor)
                if audit_logger is None:
                    audit_logger = AuditLogger(health_db)
                logger.info(
                    "Analysis cache initialized: %s (schema v%d)",
                    settings.db_path,
                    health_db.get_schema_version(),
                )
            except (EncryptionError, DatabaseError) as exc:
                logger.error("Failed to initialize storage: %s", exc)
                logger.warning("Continuing with an in-memory cache; models will not persist")
        else:
            logger.info(
                "No ENCRYPTION_KEY configured, using an in-memory analysis cache. "
                "Set ENCRYPTION_KEY to persist trained models across restarts."
            )
        if cache is None:
            cache = InMemoryAnalysisCache()
        service = HealthAnalysisService(cache, ttl_seconds=settings.cache_ttl_seconds)
    else:
        service = service_override

    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "cache_backend": service.cache.backend_name,
            "cache_entries": len(service.cache.keys()),
            "cache_ttl_seconds": settings.cache_ttl_seconds,
            "audit_enabled": audit_logger is not None,
        }

    register_wellness_tools(server, service, audit_logger)
    logger.info("Wellness tools registered")

    return server


# Module-level instance for FastMCP discovery.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
