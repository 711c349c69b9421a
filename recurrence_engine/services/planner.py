from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, tzinfo

from recurrence_engine.config import SETTINGS
from recurrence_engine.domain.calendar import Occurrence, iter_occurrences, local_date
from recurrence_engine.domain.recurrence import rule_from_task

logger = logging.getLogger(__name__)


def materialized_dates(children: Iterable[object], tz: tzinfo) -> set[date]:
    """Local calendar days already covered by an instance."""
    return {
        local_date(child.due_date, tz)
        for child in children
        if getattr(child, "due_date", None) is not None
    }


class IterationPlanner:
    """Decides which upcoming occurrences of a template still need an instance.

    The window is a fixed number of upcoming occurrences, optionally cut at
    ``horizon_days`` after "now". Occurrences whose local day already holds
    an instance are dropped, so planning twice against the same state plans
    nothing the second time.
    """

    def __init__(
        self,
        window_size: int | None = None,
        horizon_days: int | None = None,
        time_of_day: time | None = None,
    ) -> None:
        self.window_size = window_size if window_size is not None else SETTINGS.recurrence_window
        self.horizon_days = horizon_days if horizon_days is not None else SETTINGS.recurrence_horizon_days
        self.time_of_day = time_of_day if time_of_day is not None else SETTINGS.occurrence_time

    @staticmethod
    def anchor_for(template: object, tz: tzinfo) -> date:
        source = template.due_date or template.created_at
        return local_date(source, tz)

    def upcoming(
        self,
        template: object,
        now: datetime,
        tz: tzinfo,
        count: int | None = None,
    ) -> list[Occurrence]:
        return list(
            iter_occurrences(
                rule_from_task(template),
                now,
                tz,
                count if count is not None else self.window_size,
                anchor=self.anchor_for(template, tz),
                time_of_day=self.time_of_day,
            )
        )

    def plan(
        self,
        template: object,
        existing_dates: Iterable[date],
        now: datetime,
        tz: tzinfo,
        window_size: int | None = None,
    ) -> list[Occurrence]:
        horizon = now + timedelta(days=self.horizon_days) if self.horizon_days is not None else None
        taken = set(existing_dates)
        planned: list[Occurrence] = []
        for occurrence in self.upcoming(template, now, tz, window_size):
            if horizon is not None and occurrence.due_at > horizon:
                break
            if occurrence.local_date in taken:
                logger.debug(
                    "Template %s already has an instance on %s",
                    template.id,
                    occurrence.local_date,
                )
                continue
            taken.add(occurrence.local_date)
            planned.append(occurrence)
        return planned
