"""
Core configuration module for environment variables and settings management.

Design choices:
- Uses python-dotenv to load environment variables from a .env file when present.
- Provides a single get_settings() accessor with LRU caching to avoid repeated parsing.
- Tests and embedding code build Settings(...) directly instead of touching the environment.
"""
from __future__ import annotations

import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    environment: str = "dev"

    # Key-value storage ("memory" keeps everything in-process, "file" mirrors to JSON on disk)
    storage_backend: str = "file"
    storage_path: str = "data/records.json"
    storage_key: str = "course_management_data"
    backup_dir: str = "backups"
    max_backups: int = Field(default=10, ge=0)

    # Simulated latency base in milliseconds; individual calls use a fraction of it
    api_delay_ms: int = Field(default=500, ge=0)

    # Manager read cache
    cache_ttl_seconds: float = Field(default=300.0, gt=0)

    # Persisted blob schema version
    data_version: str = "1.0.0"

    # Self-check harness defaults
    harness_timeout_seconds: float = Field(default=5.0, gt=0)
    harness_retry_delay_seconds: float = Field(default=0.1, ge=0)

    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load environment variables (from .env if present) and build a Settings object.

    This function is cached so startup and repeated imports are efficient.
    """
    load_dotenv()  # no-op if .env not present
    return Settings(
        environment=os.getenv("ENVIRONMENT", "dev"),
        storage_backend=os.getenv("STORAGE_BACKEND", "file").lower(),
        storage_path=os.getenv("STORAGE_PATH", "data/records.json"),
        storage_key=os.getenv("STORAGE_KEY", "course_management_data"),
        backup_dir=os.getenv("BACKUP_DIR", "backups"),
        max_backups=int(os.getenv("MAX_BACKUPS", "10")),
        api_delay_ms=int(os.getenv("API_DELAY_MS", "500")),
        cache_ttl_seconds=float(os.getenv("CACHE_TTL_SECONDS", "300")),
        data_version=os.getenv("DATA_VERSION", "1.0.0"),
        harness_timeout_seconds=float(os.getenv("HARNESS_TIMEOUT_SECONDS", "5")),
        harness_retry_delay_seconds=float(os.getenv("HARNESS_RETRY_DELAY_SECONDS", "0.1")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
