"""Runtime settings read from the environment (and ``.env`` files)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from storage.db import get_database_path


class ConfigurationError(RuntimeError):
    """Required configuration is missing or malformed."""


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_number(name: str, default: float, cast: type = float):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return cast(default)
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    db_path: Path
    cron_secret: str | None = None
    scheduler_header: str = "x-cron-scheduler"
    embi_spreadsheet_id: str | None = None
    embi_sheet_name: str = "Indice EMBI"
    bcra_fetch_limit: int = 30
    bcra_verify_ssl: bool = True
    existence_batch_size: int = 100
    existence_batch_delay: float = 0.1
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ("*",)


def load_settings(*, require_cron_secret: bool = False) -> Settings:
    """Build ``Settings`` from environment variables.

    The HTTP service passes ``require_cron_secret=True`` so that a missing
    ``CRON_SECRET_KEY`` stops it at startup instead of leaving job triggers
    open or permanently closed.
    """

    cron_secret = (os.getenv("CRON_SECRET_KEY") or "").strip() or None
    if require_cron_secret and cron_secret is None:
        raise ConfigurationError("CRON_SECRET_KEY is not set")

    batch_size = _env_number("EXISTENCE_BATCH_SIZE", 100, int)
    if batch_size < 1:
        raise ConfigurationError("EXISTENCE_BATCH_SIZE must be at least 1")

    origins = tuple(
        origin.strip()
        for origin in os.getenv("API_CORS_ORIGINS", "*").split(",")
        if origin.strip()
    )
    return Settings(
        db_path=get_database_path(),
        cron_secret=cron_secret,
        scheduler_header=os.getenv("CRON_SCHEDULER_HEADER", "x-cron-scheduler").lower(),
        embi_spreadsheet_id=(os.getenv("EMBI_SPREADSHEET_ID") or "").strip() or None,
        embi_sheet_name=os.getenv("EMBI_SHEET_NAME", "Indice EMBI"),
        bcra_fetch_limit=_env_number("BCRA_FETCH_LIMIT", 30, int),
        bcra_verify_ssl=_env_bool("BCRA_VERIFY_SSL", True),
        existence_batch_size=batch_size,
        existence_batch_delay=_env_number("EXISTENCE_BATCH_DELAY", 0.1),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=origins or ("*",),
    )


__all__ = ["ConfigurationError", "Settings", "load_settings"]
