from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from datetime import time

import pytest
from sqlalchemy.pool import StaticPool

from recurrence_engine.infra.clock import UserTimezones
from recurrence_engine.infra.db import Base, make_engine, make_session_factory
from recurrence_engine.infra.repository import TaskRepository
from recurrence_engine.services.planner import IterationPlanner
from recurrence_engine.services.recurrence_service import RecurrenceService
from recurrence_engine.services.task_service import TaskService

from tests.helpers import FixedClock, utc


@pytest.fixture
def repo():
    engine = make_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield TaskRepository(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(utc(2025, 12, 3, 10, 0))


@pytest.fixture
def recurrence(repo, clock) -> RecurrenceService:
    planner = IterationPlanner(window_size=3, time_of_day=time(0, 0))
    return RecurrenceService(repo, clock=clock, timezones=UserTimezones("UTC"), planner=planner)


@pytest.fixture
def service(repo, recurrence, clock) -> TaskService:
    return TaskService(repo, recurrence=recurrence, clock=clock)
