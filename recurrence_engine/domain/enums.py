from __future__ import annotations

from enum import IntEnum, StrEnum


class TaskStatus(StrEnum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PLANNED = "planned"
    WAITING = "waiting"
    DONE = "done"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({
    TaskStatus.DONE,
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
    TaskStatus.ARCHIVED,
})

# Instances in these states have not been touched by the user yet.
PENDING_STATUSES = frozenset({TaskStatus.NOT_STARTED, TaskStatus.PLANNED})


class RecurrenceType(StrEnum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    MONTHLY_WEEKDAY = "monthly_weekday"
    MONTHLY_LAST_DAY = "monthly_last_day"
    YEARLY = "yearly"


class PriorityLevel(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2
