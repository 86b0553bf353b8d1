from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    app_version: str = "0.1.0"
    database_url: str = "sqlite:///./data/app.db"

    storage_key: str = "csg_data_v2"
    legacy_storage_key: str = "csg_data_v1"

    remote_filename: str = "csg_data.json"
    sync_transport: str = "drive"  # drive|memory|none
    sync_debounce_s: float = 5.0
    sync_tolerance_ms: int = 2000

    drive_token: str = field(default="", repr=False)
    drive_api_base: str = "https://www.googleapis.com"
    http_timeout_s: float = 20.0
    http_max_attempts: int = 3

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            app_version=os.getenv("APP_VERSION", "0.1.0"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./data/app.db"),
            storage_key=os.getenv("CSG_STORAGE_KEY", "csg_data_v2"),
            legacy_storage_key=os.getenv("CSG_LEGACY_STORAGE_KEY", "csg_data_v1"),
            remote_filename=os.getenv("CSG_REMOTE_FILENAME", "csg_data.json"),
            sync_transport=os.getenv("CSG_SYNC_TRANSPORT", "drive").strip().lower(),
            sync_debounce_s=_env_float("CSG_SYNC_DEBOUNCE_S", 5.0),
            sync_tolerance_ms=_env_int("CSG_SYNC_TOLERANCE_MS", 2000),
            drive_token=os.getenv("CSG_DRIVE_TOKEN", ""),
            drive_api_base=os.getenv("CSG_DRIVE_API_BASE", "https://www.googleapis.com").rstrip("/"),
            http_timeout_s=_env_float("CSG_HTTP_TIMEOUT_S", 20.0),
            http_max_attempts=max(1, _env_int("CSG_HTTP_MAX_ATTEMPTS", 3)),
        )
