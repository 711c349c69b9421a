from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum

from recurrence_engine.domain.calendar import Occurrence, as_utc
from recurrence_engine.domain.entities import TaskEntity
from recurrence_engine.domain.enums import TERMINAL_STATUSES, TaskStatus
from recurrence_engine.domain.errors import TemplateNotFoundError
from recurrence_engine.domain.filters import TaskFilters
from recurrence_engine.domain.recurrence import (
    RULE_COLUMNS,
    RecurrenceRule,
    format_weekdays,
)
from recurrence_engine.infra.clock import Clock, SystemClock
from recurrence_engine.infra.repository import TaskRepository

from .recurrence_service import DeletionResult, RecurrenceService, check_version

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = {TaskStatus.DONE.value, TaskStatus.COMPLETED.value}
TERMINAL_VALUES = {status.value for status in TERMINAL_STATUSES}
# Identity and linkage are owned by the engine, never by callers.
READ_ONLY_FIELDS = {"id", "uid", "user_id", "recurring_parent_id", "version", "created_at", "updated_at"}
INSTANT_FIELDS = ("due_date", "defer_until", "completed_at")


def _differs(old: object, new: object) -> bool:
    if isinstance(old, datetime) and isinstance(new, datetime):
        return as_utc(old) != as_utc(new)
    return old != new


class TaskService:
    def __init__(
        self,
        repo: TaskRepository,
        recurrence: RecurrenceService | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._repo = repo
        self._clock = clock or SystemClock()
        self._recurrence = recurrence or RecurrenceService(repo, clock=self._clock)

    def _now(self, now: datetime | None) -> datetime:
        return as_utc(now) if now is not None else self._clock.now()

    def list_tasks(self, filters: TaskFilters, now: datetime | None = None) -> list[TaskEntity]:
        return self._repo.list_tasks(filters, self._now(now))

    def get_task(self, task_id: int, user_id: int | None = None) -> TaskEntity | None:
        return self._repo.get_task(task_id, user_id)

    def create_task(self, user_id: int, data: dict, now: datetime | None = None) -> TaskEntity:
        now = self._now(now)
        normalized = self._normalize_data(data)
        for name in READ_ONLY_FIELDS:
            normalized.pop(name, None)
        RecurrenceRule.from_fields(normalized).validate()
        normalized.update(user_id=user_id, created_at=now)

        with self._repo.transaction() as session:
            task = self._repo.add_task(session, normalized)
            if task.is_template:
                # Fails closed on an unknown timezone before anything is committed.
                self._recurrence.generate_in(session, task, now)
            return self._repo.to_entity(task)

    def update_task(
        self,
        task_id: int,
        data: dict,
        user_id: int | None = None,
        expected_version: int | None = None,
        now: datetime | None = None,
    ) -> TaskEntity | None:
        now = self._now(now)
        normalized = self._normalize_data(data)
        for name in READ_ONLY_FIELDS:
            normalized.pop(name, None)

        with self._repo.transaction() as session:
            task = self._repo.lock_task(session, task_id, user_id)
            if not task:
                return None
            check_version(task, expected_version)
            self._track_completion(task, normalized, now)

            was_template = task.is_template
            changed = [key for key, value in normalized.items() if _differs(getattr(task, key), value)]
            if not changed:
                return self._repo.to_entity(task)
            if any(key in RULE_COLUMNS for key in changed):
                proposed = {column: getattr(task, column) for column in RULE_COLUMNS}
                proposed.update({key: normalized[key] for key in RULE_COLUMNS if key in normalized})
                RecurrenceRule.from_fields(proposed).validate()

            for key in changed:
                setattr(task, key, normalized[key])
            session.flush()

            if was_template or task.is_template:
                result = self._recurrence.sync_in(session, task, changed, now)
                logger.debug("Template %s edited (%s): %s", task.id, ", ".join(changed), result)
            return self._repo.to_entity(task)

    def delete_task(
        self,
        task_id: int,
        user_id: int | None = None,
        expected_version: int | None = None,
        now: datetime | None = None,
    ) -> DeletionResult | None:
        now = self._now(now)
        with self._repo.transaction() as session:
            task = self._repo.lock_task(session, task_id, user_id)
            if not task:
                return None
            check_version(task, expected_version)
            if task.is_template:
                return self._recurrence.delete_in(session, task, now)
            self._repo.delete_task(session, task)
            return DeletionResult(deleted_count=0, orphaned_count=0)

    def mark_done(
        self, task_id: int, user_id: int | None = None, now: datetime | None = None
    ) -> TaskEntity | None:
        now = self._now(now)
        task = self.update_task(task_id, {"status": TaskStatus.DONE}, user_id=user_id, now=now)
        if not task:
            return None
        self._top_up_parent(task, now)
        return task

    def archive_task(
        self, task_id: int, user_id: int | None = None, now: datetime | None = None
    ) -> TaskEntity | None:
        return self.update_task(task_id, {"status": TaskStatus.ARCHIVED}, user_id=user_id, now=now)

    def next_iterations(
        self, task_id: int, count: int = 5, user_id: int | None = None, now: datetime | None = None
    ) -> list[Occurrence]:
        task = self._repo.get_task(task_id, user_id)
        if not task or not task.is_template:
            return []
        return self._recurrence.preview(task_id, count=count, user_id=user_id, now=self._now(now))

    def _track_completion(self, task, normalized: dict, now: datetime) -> None:
        status = normalized.get("status")
        if status is None or "completed_at" in normalized:
            return
        if status in COMPLETED_STATUSES:
            if task.completed_at is None:
                normalized["completed_at"] = now
        elif status not in TERMINAL_VALUES:
            # Reopened. Archiving or cancelling keeps the completion time.
            normalized["completed_at"] = None

    def _normalize_data(self, data: dict) -> dict:
        normalized = dict(data)
        for key, value in normalized.items():
            if isinstance(value, Enum):
                normalized[key] = value.value
        if "recurrence_weekdays" in normalized and normalized["recurrence_weekdays"] is not None:
            weekdays = normalized["recurrence_weekdays"]
            if not isinstance(weekdays, str):
                normalized["recurrence_weekdays"] = format_weekdays(weekdays)
        for key in INSTANT_FIELDS:
            if isinstance(normalized.get(key), datetime):
                normalized[key] = as_utc(normalized[key])
        return normalized

    def _top_up_parent(self, task: TaskEntity, now: datetime) -> None:
        """Keep the window full once one of its instances is finished."""
        parent_id = task.recurring_parent_id
        if parent_id is None:
            return
        parent = self._repo.get_task(parent_id)
        if not parent or not parent.is_template:
            return
        try:
            self._recurrence.generate_upcoming(parent_id, now=now)
        except TemplateNotFoundError:
            # Deleted between the two transactions; the instance is already detached.
            logger.debug("Template %s vanished before top-up", parent_id)
