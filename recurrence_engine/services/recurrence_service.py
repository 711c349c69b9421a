"""Entry points of the recurring task engine.

Each public method is one transaction scoped to a single template: the
template row is locked first, so two edits of the same template run one
after the other, while different templates proceed independently. The
methods accept an explicit ``now``; the injected clock is only consulted
when it is omitted.

The ``*_in`` variants run inside a transaction the caller already holds,
which lets the task facade apply an edit and its consequences atomically.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo

from sqlalchemy.orm import Session

from recurrence_engine.domain.calendar import (
    Occurrence,
    as_utc,
    resolve_timezone,
    to_instant,
)
from recurrence_engine.domain.deletion import partition_children
from recurrence_engine.domain.entities import TaskEntity
from recurrence_engine.domain.errors import (
    ConcurrentModificationError,
    RecurrenceError,
    TemplateNotFoundError,
)
from recurrence_engine.infra.clock import Clock, SystemClock, UserTimezones
from recurrence_engine.infra.models import TaskModel
from recurrence_engine.infra.repository import TaskRepository

from .materializer import InstanceMaterializer
from .planner import IterationPlanner
from .sync import SyncResult, TemplateSyncController

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    created: list[TaskEntity]


@dataclass(frozen=True)
class UpdateResult:
    regenerated: bool
    updated_count: int
    created: list[TaskEntity]
    deleted_count: int = 0
    orphaned_count: int = 0


@dataclass(frozen=True)
class DeletionResult:
    deleted_count: int
    orphaned_count: int


def check_version(task: TaskModel, expected_version: int | None) -> None:
    if expected_version is not None and task.version != expected_version:
        raise ConcurrentModificationError(
            f"Task {task.id} is at version {task.version}, expected {expected_version}"
        )


class RecurrenceService:
    def __init__(
        self,
        repo: TaskRepository,
        clock: Clock | None = None,
        timezones: UserTimezones | None = None,
        planner: IterationPlanner | None = None,
    ) -> None:
        self._repo = repo
        self._clock = clock or SystemClock()
        self._timezones = timezones or UserTimezones()
        self.planner = planner or IterationPlanner()
        self.materializer = InstanceMaterializer(repo, self.planner)
        self.sync = TemplateSyncController(repo, self.materializer)

    def _now(self, now: datetime | None) -> datetime:
        return as_utc(now) if now is not None else self._clock.now()

    def timezone_for(self, task: object) -> tzinfo:
        return resolve_timezone(
            task.recurrence_timezone or self._timezones.timezone_for(task.user_id)
        )

    def _entities(self, tasks: Iterable[TaskModel]) -> list[TaskEntity]:
        return [self._repo.to_entity(task) for task in tasks]

    # Generation

    def generate_upcoming(
        self, template_id: int, user_id: int | None = None, now: datetime | None = None
    ) -> GenerationResult:
        now = self._now(now)
        with self._repo.transaction() as session:
            template = self._repo.lock_template(session, template_id, user_id)
            created = self.generate_in(session, template, now)
            return GenerationResult(created=self._entities(created))

    def generate_in(self, session: Session, template: TaskModel, now: datetime) -> list[TaskModel]:
        tz = self.timezone_for(template)
        children = self._repo.children_of(session, template.id)
        return self.materializer.top_up(session, template, children, now, tz)

    def generate_for_user(self, user_id: int, now: datetime | None = None) -> list[TaskEntity]:
        with self._repo.transaction() as session:
            template_ids = self._repo.template_ids(session, user_id)
        return self._generate_each(template_ids, user_id, self._now(now))

    def generate_all(self, now: datetime | None = None) -> list[TaskEntity]:
        with self._repo.transaction() as session:
            template_ids = self._repo.template_ids(session)
        return self._generate_each(template_ids, None, self._now(now))

    def _generate_each(
        self, template_ids: list[int], user_id: int | None, now: datetime
    ) -> list[TaskEntity]:
        created: list[TaskEntity] = []
        failed = 0
        for template_id in template_ids:
            try:
                created.extend(self.generate_upcoming(template_id, user_id, now).created)
            except TemplateNotFoundError:
                logger.debug("Template %s disappeared before generation", template_id)
            except RecurrenceError as exc:
                failed += 1
                logger.error("Generation failed for template %s: %s", template_id, exc)
        logger.info(
            "Generated %d instance(s) across %d template(s), %d failed",
            len(created),
            len(template_ids),
            failed,
        )
        return created

    def preview(
        self,
        template_id: int,
        count: int = 5,
        start_from: date | None = None,
        user_id: int | None = None,
        now: datetime | None = None,
    ) -> list[Occurrence]:
        """Upcoming occurrences of a template, without writing anything."""
        template = self._repo.get_task(template_id, user_id)
        if template is None or not template.is_template:
            raise TemplateNotFoundError(template_id)
        tz = self.timezone_for(template)
        reference = self._now(now)
        if start_from is not None:
            # Occurrences on start_from itself are included.
            reference = to_instant(start_from, tz, time.min) - timedelta(microseconds=1)
        return self.planner.upcoming(template, reference, tz, count)

    # Template edits

    def on_template_updated(
        self,
        template_id: int,
        changed_fields: Iterable[str],
        user_id: int | None = None,
        expected_version: int | None = None,
        now: datetime | None = None,
    ) -> UpdateResult:
        now = self._now(now)
        with self._repo.transaction() as session:
            task = self._repo.lock_task(session, template_id, user_id)
            if task is None:
                raise TemplateNotFoundError(template_id)
            check_version(task, expected_version)
            result = self.sync_in(session, task, changed_fields, now)
            return self.to_update_result(result)

    def sync_in(
        self, session: Session, task: TaskModel, changed_fields: Iterable[str], now: datetime
    ) -> SyncResult:
        return self.sync.apply(session, task, changed_fields, now, self.timezone_for(task))

    def to_update_result(self, result: SyncResult) -> UpdateResult:
        return UpdateResult(
            regenerated=result.regenerated,
            updated_count=result.updated_count,
            created=self._entities(result.created),
            deleted_count=result.deleted_count,
            orphaned_count=result.orphaned_count,
        )

    # Template deletion

    def on_template_deleted(
        self,
        template_id: int,
        user_id: int | None = None,
        expected_version: int | None = None,
        now: datetime | None = None,
    ) -> DeletionResult:
        now = self._now(now)
        with self._repo.transaction() as session:
            template = self._repo.lock_template(session, template_id, user_id)
            check_version(template, expected_version)
            return self.delete_in(session, template, now)

    def delete_in(self, session: Session, template: TaskModel, now: datetime) -> DeletionResult:
        tz = self.timezone_for(template)
        children = self._repo.children_of(session, template.id)
        partition = partition_children(children, now, tz)

        deleted = self._repo.delete_many(session, [child.id for child in partition.to_delete])
        orphaned = self._repo.detach_many(session, [child.id for child in partition.to_orphan])
        self._repo.delete_task(session, template)
        logger.info(
            "Deleted template %s: removed %d future instance(s), detached %d",
            template.id,
            deleted,
            orphaned,
        )
        return DeletionResult(deleted_count=deleted, orphaned_count=orphaned)
