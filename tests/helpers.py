from __future__ import annotations

from datetime import datetime, timezone

from recurrence_engine.domain.entities import TaskEntity
from recurrence_engine.infra.repository import TaskRepository


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current


def add_task(repo: TaskRepository, **fields) -> TaskEntity:
    data = {"user_id": 1, "name": "Task", "created_at": utc(2025, 12, 1)}
    data.update(fields)
    with repo.transaction() as session:
        return repo.to_entity(repo.add_task(session, data))


def add_template(repo: TaskRepository, **fields) -> TaskEntity:
    data = {
        "name": "Daily Exercise",
        "recurrence_type": "daily",
        "recurrence_interval": 1,
        "project_id": 10,
        "priority": 1,
        "tags": "health",
    }
    data.update(fields)
    return add_task(repo, **data)


def add_instance(
    repo: TaskRepository, template: TaskEntity, due: datetime, status: str = "not_started", **fields
) -> TaskEntity:
    data = {
        "user_id": template.user_id,
        "name": template.name,
        "project_id": template.project_id,
        "recurring_parent_id": template.id,
        "due_date": due,
        "status": status,
    }
    data.update(fields)
    return add_task(repo, **data)
