from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from recurrence_engine.domain.calendar import local_date, resolve_timezone, to_instant
from recurrence_engine.domain.entities import TaskEntity
from recurrence_engine.domain.enums import TERMINAL_STATUSES, RecurrenceType, TaskStatus
from recurrence_engine.domain.errors import (
    ConcurrentModificationError,
    TemplateNotFoundError,
    TransactionFailure,
)
from recurrence_engine.domain.filters import TaskFilters
from recurrence_engine.domain.recurrence import parse_weekdays

from .db import SessionLocal
from .models import TaskModel, utcnow

logger = logging.getLogger(__name__)

TERMINAL = [status.value for status in TERMINAL_STATUSES]


def _to_entity(model: TaskModel) -> TaskEntity:
    return TaskEntity(
        id=model.id,
        uid=model.uid,
        user_id=model.user_id,
        name=model.name,
        description=model.description,
        status=TaskStatus(model.status),
        priority=model.priority,
        project_id=model.project_id,
        area_id=model.area_id,
        tags=model.tags,
        due_date=model.due_date,
        defer_until=model.defer_until,
        completed_at=model.completed_at,
        parent_task_id=model.parent_task_id,
        recurrence_type=RecurrenceType(model.recurrence_type),
        recurrence_interval=model.recurrence_interval,
        recurrence_month_day=model.recurrence_month_day,
        recurrence_weekday=model.recurrence_weekday,
        recurrence_weekdays=parse_weekdays(model.recurrence_weekdays),
        recurrence_month=model.recurrence_month,
        recurrence_week_of_month=model.recurrence_week_of_month,
        recurrence_end_date=model.recurrence_end_date,
        recurrence_timezone=model.recurrence_timezone,
        recurrence_paused=bool(model.recurrence_paused),
        recurring_parent_id=model.recurring_parent_id,
        created_at=model.created_at,
        updated_at=model.updated_at,
        version=model.version,
    )


def _apply_filters(stmt, filters: TaskFilters, now: datetime) -> object:
    tz = resolve_timezone(filters.timezone)
    today = local_date(now, tz)
    today_start = to_instant(today, tz)
    tomorrow_start = to_instant(today + timedelta(days=1), tz)

    stmt = stmt.where(TaskModel.user_id == filters.user_id)

    if filters.filter_key == "templates":
        stmt = stmt.where(TaskModel.is_template)
    elif filters.filter_key == "instances":
        stmt = stmt.where(TaskModel.recurring_parent_id.is_not(None))
    elif filters.filter_key == "in_progress":
        stmt = stmt.where(TaskModel.status == TaskStatus.IN_PROGRESS.value)
    elif filters.filter_key == "done":
        stmt = stmt.where(TaskModel.status.in_(TERMINAL))
    elif filters.filter_key == "today":
        stmt = stmt.where(
            TaskModel.due_date >= today_start,
            TaskModel.due_date < tomorrow_start,
            TaskModel.status.notin_(TERMINAL),
        )
    elif filters.filter_key == "overdue":
        stmt = stmt.where(
            TaskModel.due_date.is_not(None),
            TaskModel.due_date < today_start,
            TaskModel.status.notin_(TERMINAL),
        )
    elif filters.filter_key == "upcoming":
        horizon = to_instant(today + timedelta(days=8), tz)
        stmt = stmt.where(
            TaskModel.due_date >= today_start,
            TaskModel.due_date < horizon,
            TaskModel.status.notin_(TERMINAL),
        )

    if filters.due_on:
        stmt = stmt.where(
            TaskModel.due_date >= to_instant(filters.due_on, tz),
            TaskModel.due_date < to_instant(filters.due_on + timedelta(days=1), tz),
        )

    if filters.recurring_parent_id is not None:
        stmt = stmt.where(TaskModel.recurring_parent_id == filters.recurring_parent_id)

    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(
            or_(
                TaskModel.name.ilike(pattern),
                TaskModel.description.ilike(pattern),
                TaskModel.tags.ilike(pattern),
            )
        )

    return stmt


class TaskRepository:
    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or SessionLocal

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """One all-or-nothing unit of work.

        Commits when the block exits normally and rolls back otherwise.
        Storage errors surface as :class:`TransactionFailure`, lost version
        races as :class:`ConcurrentModificationError`; anything else raised
        in the block propagates unchanged after the rollback.
        """
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except StaleDataError as exc:
            logger.warning("Concurrent modification detected: %s", exc)
            raise ConcurrentModificationError(str(exc)) from exc
        except SQLAlchemyError as exc:
            logger.error("Transaction rolled back: %s", exc)
            raise TransactionFailure(str(exc)) from exc
        finally:
            session.close()

    def list_tasks(self, filters: TaskFilters, now: datetime | None = None) -> list[TaskEntity]:
        with self._session_factory() as session:
            stmt = select(TaskModel)
            stmt = _apply_filters(stmt, filters, now or utcnow())
            stmt = stmt.order_by(
                TaskModel.due_date.is_(None),
                TaskModel.due_date.asc(),
                TaskModel.priority.desc(),
                TaskModel.created_at.desc(),
            )
            return [_to_entity(task) for task in session.scalars(stmt)]

    def get_task(self, task_id: int, user_id: int | None = None) -> Optional[TaskEntity]:
        with self._session_factory() as session:
            task = session.get(TaskModel, task_id)
            if not task or (user_id is not None and task.user_id != user_id):
                return None
            return _to_entity(task)

    def list_children(self, template_id: int) -> list[TaskEntity]:
        with self._session_factory() as session:
            return [_to_entity(task) for task in self.children_of(session, template_id)]

    # Session-scoped operations, composed by the services inside transaction().

    def lock_task(
        self, session: Session, task_id: int, user_id: int | None = None
    ) -> Optional[TaskModel]:
        stmt = select(TaskModel).where(TaskModel.id == task_id).with_for_update()
        if user_id is not None:
            stmt = stmt.where(TaskModel.user_id == user_id)
        return session.scalars(stmt).first()

    def lock_template(
        self, session: Session, template_id: int, user_id: int | None = None
    ) -> TaskModel:
        task = self.lock_task(session, template_id, user_id)
        if task is None or not task.is_template:
            raise TemplateNotFoundError(template_id)
        return task

    def children_of(self, session: Session, template_id: int) -> list[TaskModel]:
        stmt = (
            select(TaskModel)
            .where(TaskModel.recurring_parent_id == template_id)
            .order_by(TaskModel.due_date.asc(), TaskModel.id.asc())
        )
        return list(session.scalars(stmt))

    def template_ids(self, session: Session, user_id: int | None = None) -> list[int]:
        stmt = (
            select(TaskModel.id)
            .where(TaskModel.is_template, TaskModel.recurrence_paused.is_(False))
            .order_by(TaskModel.id.asc())
        )
        if user_id is not None:
            stmt = stmt.where(TaskModel.user_id == user_id)
        return list(session.scalars(stmt))

    def add_task(self, session: Session, data: dict) -> TaskModel:
        task = TaskModel(**data)
        session.add(task)
        session.flush()
        return task

    def update_many(self, session: Session, task_ids: Sequence[int], values: dict) -> int:
        if not task_ids:
            return 0
        result = session.execute(
            update(TaskModel)
            .where(TaskModel.id.in_(task_ids))
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def detach_many(self, session: Session, task_ids: Sequence[int]) -> int:
        return self.update_many(session, task_ids, {"recurring_parent_id": None})

    def delete_many(self, session: Session, task_ids: Sequence[int]) -> int:
        if not task_ids:
            return 0
        # Manual subtasks go with their parent.
        session.execute(
            delete(TaskModel)
            .where(TaskModel.parent_task_id.in_(task_ids))
            .execution_options(synchronize_session=False)
        )
        result = session.execute(
            delete(TaskModel)
            .where(TaskModel.id.in_(task_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def delete_task(self, session: Session, task: TaskModel) -> None:
        session.execute(
            delete(TaskModel)
            .where(TaskModel.parent_task_id == task.id)
            .execution_options(synchronize_session=False)
        )
        session.delete(task)
        # Flushing here runs the version check while the caller can still roll back.
        session.flush()

    @staticmethod
    def to_entity(task: TaskModel) -> TaskEntity:
        return _to_entity(task)
