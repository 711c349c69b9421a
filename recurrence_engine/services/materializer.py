from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, tzinfo

from sqlalchemy.orm import Session

from recurrence_engine.domain.calendar import Occurrence
from recurrence_engine.domain.enums import RecurrenceType, TaskStatus
from recurrence_engine.infra.models import TaskModel
from recurrence_engine.infra.repository import TaskRepository

from .planner import IterationPlanner, materialized_dates

logger = logging.getLogger(__name__)

# Template attributes every instance carries. Edits to these on the template
# are pushed to instances that have not been started yet.
INHERITED_FIELDS = ("name", "description", "project_id", "area_id", "priority", "tags")


class InstanceMaterializer:
    def __init__(self, repo: TaskRepository, planner: IterationPlanner) -> None:
        self._repo = repo
        self._planner = planner

    def materialize(
        self, session: Session, template: TaskModel, occurrences: Iterable[Occurrence]
    ) -> list[TaskModel]:
        occurrences = list(occurrences)
        created = []
        for occurrence in occurrences:
            data = {field: getattr(template, field) for field in INHERITED_FIELDS}
            data.update(
                user_id=template.user_id,
                recurring_parent_id=template.id,
                recurrence_type=RecurrenceType.NONE.value,
                due_date=occurrence.due_at,
                status=TaskStatus.NOT_STARTED.value,
            )
            created.append(self._repo.add_task(session, data))
        if created:
            logger.info(
                "Materialized %d instance(s) of template %s: %s",
                len(created),
                template.id,
                ", ".join(str(occurrence.local_date) for occurrence in occurrences),
            )
        return created

    def top_up(
        self,
        session: Session,
        template: TaskModel,
        children: Sequence[TaskModel],
        now: datetime,
        tz: tzinfo,
    ) -> list[TaskModel]:
        """Create the instances missing from the template's current window."""
        if template.recurrence_paused:
            logger.debug("Template %s is paused; nothing generated", template.id)
            return []
        planned = self._planner.plan(template, materialized_dates(children, tz), now, tz)
        return self.materialize(session, template, planned)
