from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    and_,
)
from sqlalchemy.ext.hybrid import hybrid_property

from recurrence_engine.domain.enums import RecurrenceType, TaskStatus
from recurrence_engine.domain.recurrence import is_template as _is_template

from .db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uid() -> str:
    return uuid.uuid4().hex


class TaskModel(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True)
    uid = Column(String(32), nullable=False, unique=True, default=new_uid)
    user_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default=TaskStatus.NOT_STARTED.value, index=True)
    priority = Column(Integer, nullable=False, default=1)
    project_id = Column(Integer, nullable=True, index=True)
    area_id = Column(Integer, nullable=True)
    tags = Column(Text, nullable=False, default="")
    due_date = Column(DateTime(timezone=True), nullable=True, index=True)
    defer_until = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    parent_task_id = Column(
        Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True
    )

    recurrence_type = Column(String(20), nullable=False, default=RecurrenceType.NONE.value)
    recurrence_interval = Column(Integer, nullable=False, default=1)
    recurrence_month_day = Column(Integer, nullable=True)
    recurrence_weekday = Column(Integer, nullable=True)
    recurrence_weekdays = Column(String(20), nullable=True)
    recurrence_month = Column(Integer, nullable=True)
    recurrence_week_of_month = Column(Integer, nullable=True)
    recurrence_end_date = Column(Date, nullable=True)
    recurrence_timezone = Column(String(64), nullable=True)
    recurrence_paused = Column(Boolean, nullable=False, default=False)
    recurring_parent_id = Column(
        Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @hybrid_property
    def is_template(self) -> bool:
        return _is_template(self.recurrence_type, self.recurring_parent_id)

    @is_template.expression
    def is_template(cls):
        return and_(
            cls.recurrence_type != RecurrenceType.NONE.value,
            cls.recurring_parent_id.is_(None),
        )
