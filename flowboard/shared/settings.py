"""Shared runtime settings for stores, GitHub access, and request budgets."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_BLOB_NAME = "workflows.json"


@dataclass(frozen=True)
class FlowboardSettings:
    """Backend selection and limits resolved from ``FLOWBOARD_*`` variables."""

    data_dir: Path
    store_backend: str
    sqlite_path: Path
    blob_url: str
    blob_name: str
    connector: str
    github_api_url: str
    http_timeout_s: float
    max_workers: int
    max_attempts: int
    log_level: str

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> "FlowboardSettings":
        source = os.environ if env is None else env
        data_dir = Path(source.get("FLOWBOARD_DATA_DIR", "./data"))
        sqlite_path = Path(
            source.get("FLOWBOARD_SQLITE_PATH", str(data_dir / "flowboard.sqlite"))
        )
        return cls(
            data_dir=data_dir,
            store_backend=(source.get("FLOWBOARD_STORE") or "sqlite").strip().lower(),
            sqlite_path=sqlite_path,
            blob_url=(source.get("FLOWBOARD_BLOB_URL") or "").strip(),
            blob_name=(source.get("FLOWBOARD_BLOB_NAME") or DEFAULT_BLOB_NAME).strip(),
            connector=(source.get("FLOWBOARD_GITHUB_CONNECTOR") or "in_memory").strip().lower(),
            github_api_url=(
                source.get("FLOWBOARD_GITHUB_API_URL") or DEFAULT_GITHUB_API_URL
            ).rstrip("/"),
            http_timeout_s=_positive_float(source.get("FLOWBOARD_HTTP_TIMEOUT_S"), 5.0),
            max_workers=_positive_int(source.get("FLOWBOARD_MAX_WORKERS"), 8),
            max_attempts=_positive_int(source.get("FLOWBOARD_MAX_ATTEMPTS"), 3),
            log_level=(source.get("FLOWBOARD_LOG_LEVEL") or "INFO").strip().upper(),
        )


def get_settings(env: dict[str, str] | None = None) -> FlowboardSettings:
    """Build settings from environment variables."""

    return FlowboardSettings.from_env(env)


def _positive_float(value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _positive_int(value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default
