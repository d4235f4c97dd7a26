"""Vitalcore server entry point — ``python -m vitalcore.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from vitalcore.core.config.settings import get_settings
from vitalcore.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the wellness MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.vitalcore_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.vitalcore_allow_insecure_bind and not _is_loopback_host(
        settings.vitalcore_host
    ):
        raise RuntimeError(
            "Refusing to bind the wellness server to a non-loopback host without an "
            "auth layer. Set VITALCORE_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting Vitalcore wellness server on %s:%d",
        settings.vitalcore_host,
        settings.vitalcore_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.vitalcore_host,
        port=settings.vitalcore_port,
    )


if __name__ == "__main__":
    run()
