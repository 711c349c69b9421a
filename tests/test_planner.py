from __future__ import annotations

from datetime import date, time
from types import SimpleNamespace
from zoneinfo import ZoneInfo

from recurrence_engine.services.planner import IterationPlanner, materialized_dates

from tests.helpers import utc

UTC = ZoneInfo("UTC")


def _template(**fields) -> SimpleNamespace:
    data = {
        "id": 1,
        "recurrence_type": "daily",
        "recurrence_interval": 1,
        "due_date": None,
        "created_at": utc(2025, 1, 1),
    }
    data.update(fields)
    return SimpleNamespace(**data)


def test_plan_skips_days_that_already_have_an_instance() -> None:
    planner = IterationPlanner(window_size=3, time_of_day=time(0, 0))

    planned = planner.plan(_template(), {date(2025, 1, 3)}, utc(2025, 1, 1, 12), UTC)

    assert [o.local_date for o in planned] == [date(2025, 1, 2), date(2025, 1, 4)]


def test_plan_is_empty_once_the_window_is_materialized() -> None:
    planner = IterationPlanner(window_size=3, time_of_day=time(0, 0))
    now = utc(2025, 1, 1, 12)

    first = planner.plan(_template(), set(), now, UTC)
    second = planner.plan(_template(), {o.local_date for o in first}, now, UTC)

    assert len(first) == 3
    assert second == []


def test_plan_stops_at_the_horizon() -> None:
    planner = IterationPlanner(window_size=5, horizon_days=2, time_of_day=time(0, 0))

    planned = planner.plan(_template(), set(), utc(2025, 1, 1, 12), UTC)

    assert [o.local_date for o in planned] == [date(2025, 1, 2), date(2025, 1, 3)]


def test_template_due_date_anchors_the_series() -> None:
    planner = IterationPlanner(window_size=2, time_of_day=time(0, 0))
    template = _template(recurrence_interval=2, due_date=utc(2025, 1, 2))

    planned = planner.plan(template, set(), utc(2025, 1, 1, 12), UTC)

    assert [o.local_date for o in planned] == [date(2025, 1, 2), date(2025, 1, 4)]


def test_existing_dates_are_read_in_the_template_timezone() -> None:
    tz = ZoneInfo("America/New_York")
    children = [SimpleNamespace(due_date=utc(2025, 1, 3, 3)), SimpleNamespace(due_date=None)]

    assert materialized_dates(children, tz) == {date(2025, 1, 2)}


def test_time_of_day_baseline_is_applied_in_local_time() -> None:
    planner = IterationPlanner(window_size=1, time_of_day=time(9, 0))
    tz = ZoneInfo("Europe/Berlin")

    planned = planner.plan(_template(), set(), utc(2025, 7, 1, 6), tz)

    # 09:00 CEST on the same day is still ahead of 08:00 local
    assert planned[0].local_date == date(2025, 7, 1)
    assert planned[0].due_at == utc(2025, 7, 1, 7)


def test_zero_window_plans_nothing() -> None:
    planner = IterationPlanner(window_size=0, time_of_day=time(0, 0))

    assert planner.plan(_template(), set(), utc(2025, 1, 1, 12), UTC) == []


def test_zero_horizon_plans_nothing_past_now() -> None:
    planner = IterationPlanner(window_size=3, horizon_days=0, time_of_day=time(0, 0))

    assert planner.plan(_template(), set(), utc(2025, 1, 1, 12), UTC) == []
