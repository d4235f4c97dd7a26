"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Wellness analytics core configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default; the server has no auth layer.
    vitalcore_host: str = "127.0.0.1"
    vitalcore_port: int = 8001
    vitalcore_log_level: str = "info"
    # Refuse non-loopback binds unless explicitly allowed.
    vitalcore_allow_insecure_bind: bool = False

    # Analysis cache. Without an encryption key the cache stays in memory.
    db_path: str = "~/.vitalcore/analysis.db"
    encryption_key: str = ""
    cache_ttl_seconds: int = 86400


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
