from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from .enums import RecurrenceType, TaskStatus
from .recurrence import RecurrenceRule, is_template, rule_from_task


@dataclass(frozen=True)
class TaskEntity:
    id: int | None
    uid: str
    user_id: int
    name: str
    description: str
    status: TaskStatus
    priority: int
    project_id: int | None
    area_id: int | None
    tags: str
    due_date: Optional[datetime]
    defer_until: Optional[datetime]
    completed_at: Optional[datetime]
    parent_task_id: int | None
    recurrence_type: RecurrenceType
    recurrence_interval: int
    recurrence_month_day: int | None
    recurrence_weekday: int | None
    recurrence_weekdays: tuple[int, ...]
    recurrence_month: int | None
    recurrence_week_of_month: int | None
    recurrence_end_date: Optional[date]
    recurrence_timezone: str | None
    recurrence_paused: bool
    recurring_parent_id: int | None
    created_at: datetime
    updated_at: datetime
    version: int

    @property
    def is_template(self) -> bool:
        return is_template(self.recurrence_type, self.recurring_parent_id)

    @property
    def is_instance(self) -> bool:
        return self.recurring_parent_id is not None

    @property
    def rule(self) -> RecurrenceRule:
        return rule_from_task(self)
