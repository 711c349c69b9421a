from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

from recurrence_engine.config import SETTINGS


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class UserTimezones:
    """IANA timezone name per user, falling back to a default."""

    def __init__(self, default: str | None = None, by_user: dict[int, str] | None = None) -> None:
        self._default = default or SETTINGS.default_timezone
        self._by_user = dict(by_user or {})

    def set(self, user_id: int, name: str) -> None:
        self._by_user[user_id] = name

    def timezone_for(self, user_id: int) -> str:
        return self._by_user.get(user_id) or self._default
