"""
Centralized configuration, loaded once at process startup.

Why a single settings module?
  - The standalone server, the example app and the benchmark all read
    the same env vars.
  - Pydantic validates types at import time so we fail fast on bad config
    (a zero retention interval would spin the retention timer).
  - The engine itself never imports this module. It takes an EngineConfig,
    built from Settings by EngineConfig.from_settings(), so tests and
    embedding applications can construct engines without touching env.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, List

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Immutable, validated application settings from environment."""

    # ── Aggregation / retention ─────────────────────────────
    max_retention_ms: int = Field(
        default=120_000, gt=0,
        description="Buckets older than this are evicted; also the retention pass interval",
    )
    aggregate_seconds: int = Field(
        default=60, gt=0,
        description="Default window length for fields that do not set their own",
    )
    custom_fields: List[Dict[str, Any]] = Field(
        default_factory=list,
        description='JSON list of field definitions, e.g. [{"name": "latency", "type": "avg"}]',
    )

    # ── Exposure services ───────────────────────────────────
    apis: List[str] = Field(
        default_factory=list,
        description="Exposure services started with the engine (currently: web)",
    )
    web_host: str = Field(default="0.0.0.0", description="Bind address of the monitoring web API")
    web_port: int = Field(default=3001, description="Port of the monitoring web API")

    # ── Standalone server ───────────────────────────────────
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # ── Logging ─────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False, description="Render logs as JSON lines")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Singleton accessor, parsed once and cached for the process lifetime.
        from configs.settings import get_settings
        cfg = get_settings()
    """
    return Settings()
