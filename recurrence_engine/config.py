from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from datetime import time
from pathlib import Path

from dotenv import load_dotenv

def _resolve_project_root() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]


PROJECT_ROOT = _resolve_project_root()


def load_env() -> None:
    env_name = os.getenv("APP_ENV", "development")
    candidates = [Path.cwd(), PROJECT_ROOT]
    for base in candidates:
        env_path = base / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            break

    for base in candidates:
        env_specific = base / f".env.{env_name}"
        if env_specific.exists():
            load_dotenv(env_specific, override=True)
            break


def _parse_time(raw: str) -> time:
    hours, _, minutes = raw.strip().partition(":")
    return time(int(hours), int(minutes or 0))


def _parse_optional_int(raw: str | None) -> int | None:
    raw = (raw or "").strip()
    return int(raw) if raw else None


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str = "INFO"
    log_dir: str = "logs"
    default_timezone: str = "UTC"
    recurrence_window: int = 7
    recurrence_horizon_days: int | None = None
    occurrence_time: time = time(0, 0)


load_env()

DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set. Create a .env file with your connection string.")

SETTINGS = Settings(
    database_url=DATABASE_URL,
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_dir=os.getenv("LOG_DIR", "logs"),
    default_timezone=os.getenv("DEFAULT_TIMEZONE", "UTC").strip() or "UTC",
    recurrence_window=int(os.getenv("RECURRENCE_WINDOW", "7")),
    recurrence_horizon_days=_parse_optional_int(os.getenv("RECURRENCE_HORIZON_DAYS")),
    occurrence_time=_parse_time(os.getenv("OCCURRENCE_TIME", "00:00")),
)
