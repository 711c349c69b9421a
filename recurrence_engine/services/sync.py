from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, tzinfo

from sqlalchemy.orm import Session

from recurrence_engine.domain.deletion import partition_children
from recurrence_engine.domain.recurrence import RULE_COLUMNS, rule_from_task
from recurrence_engine.infra.models import TaskModel
from recurrence_engine.infra.repository import TaskRepository

from .materializer import INHERITED_FIELDS, InstanceMaterializer

logger = logging.getLogger(__name__)

# Any of these moves the dates the series produces.
CADENCE_FIELDS = frozenset(RULE_COLUMNS) | {"recurrence_timezone", "due_date"}
PAUSE_FIELD = "recurrence_paused"


@dataclass
class SyncResult:
    regenerated: bool = False
    updated_count: int = 0
    created: list[TaskModel] = field(default_factory=list)
    deleted_count: int = 0
    orphaned_count: int = 0


def _ids(tasks: Iterable[TaskModel]) -> list[int]:
    return [task.id for task in tasks]


class TemplateSyncController:
    """Brings a template's instances in line after the template was edited.

    Runs inside the caller's transaction, after the edit has been applied to
    ``task``. Past, started and finished instances are never modified; only
    future instances that are still pending are updated, removed or
    regenerated.
    """

    def __init__(self, repo: TaskRepository, materializer: InstanceMaterializer) -> None:
        self._repo = repo
        self._materializer = materializer

    def apply(
        self,
        session: Session,
        task: TaskModel,
        changed_fields: Iterable[str],
        now: datetime,
        tz: tzinfo,
    ) -> SyncResult:
        changed = set(changed_fields)
        children = self._repo.children_of(session, task.id)
        partition = partition_children(children, now, tz)

        if not task.is_template:
            return self._stop_recurring(session, task, partition)

        if changed & CADENCE_FIELDS:
            return self._regenerate(session, task, partition, now, tz)

        result = SyncResult()
        pending = partition.to_delete
        propagated = {name: getattr(task, name) for name in INHERITED_FIELDS if name in changed}
        if propagated and pending:
            result.updated_count = self._repo.update_many(session, _ids(pending), propagated)
            logger.info(
                "Propagated %s from template %s to %d future instance(s)",
                ", ".join(sorted(propagated)),
                task.id,
                result.updated_count,
            )

        if PAUSE_FIELD in changed and not task.recurrence_paused:
            result.created = self._materializer.top_up(session, task, children, now, tz)
        return result

    def _regenerate(self, session: Session, task: TaskModel, partition, now: datetime, tz: tzinfo) -> SyncResult:
        rule_from_task(task).validate()
        deleted = self._repo.delete_many(session, _ids(partition.to_delete))
        created = self._materializer.top_up(session, task, partition.to_orphan, now, tz)
        logger.info(
            "Regenerated template %s: dropped %d future instance(s), created %d",
            task.id,
            deleted,
            len(created),
        )
        return SyncResult(regenerated=True, created=created, deleted_count=deleted)

    def _stop_recurring(self, session: Session, task: TaskModel, partition) -> SyncResult:
        deleted = self._repo.delete_many(session, _ids(partition.to_delete))
        orphaned = self._repo.detach_many(session, _ids(partition.to_orphan))
        if deleted or orphaned:
            logger.info(
                "Task %s no longer recurs: removed %d instance(s), detached %d",
                task.id,
                deleted,
                orphaned,
            )
        return SyncResult(deleted_count=deleted, orphaned_count=orphaned)
