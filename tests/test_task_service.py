from __future__ import annotations

from datetime import date

import pytest

from recurrence_engine.domain.calendar import as_utc
from recurrence_engine.domain.enums import RecurrenceType, TaskStatus
from recurrence_engine.domain.errors import (
    ConcurrentModificationError,
    InvalidRuleError,
    TimezoneResolutionError,
)
from recurrence_engine.domain.filters import TaskFilters

from tests.helpers import add_instance, add_task, utc


def _daily(**fields) -> dict:
    data = {
        "name": "Stretch",
        "recurrence_type": RecurrenceType.DAILY,
        "recurrence_interval": 1,
        "project_id": 10,
    }
    data.update(fields)
    return data


def _local_days(tasks) -> list[date]:
    return [task.due_date.date() for task in tasks]


def test_creating_a_template_materializes_instances(service, repo) -> None:
    template = service.create_task(1, _daily())

    assert template.is_template
    assert _local_days(repo.list_children(template.id)) == [
        date(2025, 12, 4),
        date(2025, 12, 5),
        date(2025, 12, 6),
    ]


def test_creating_a_plain_task_creates_nothing_else(service, repo) -> None:
    task = service.create_task(1, {"name": "Buy milk"})

    assert not task.is_template
    assert len(service.list_tasks(TaskFilters(user_id=1))) == 1


def test_linkage_cannot_be_set_by_callers(service) -> None:
    task = service.create_task(1, {"name": "Sneaky", "recurring_parent_id": 42, "user_id": 7})

    assert task.recurring_parent_id is None
    assert task.user_id == 1


def test_invalid_rule_is_rejected_on_create(service) -> None:
    with pytest.raises(InvalidRuleError):
        service.create_task(1, _daily(recurrence_interval=0))

    assert service.list_tasks(TaskFilters(user_id=1)) == []


def test_unknown_timezone_rolls_back_the_create(service) -> None:
    with pytest.raises(TimezoneResolutionError):
        service.create_task(1, _daily(recurrence_timezone="Nowhere/Special"))

    assert service.list_tasks(TaskFilters(user_id=1)) == []


def test_mark_done_sets_completion_and_tops_up_the_window(service, repo) -> None:
    template = service.create_task(1, _daily())
    first = repo.list_children(template.id)[0]

    done = service.mark_done(first.id, now=utc(2025, 12, 5, 10))

    assert done.status == TaskStatus.DONE
    assert done.completed_at is not None
    assert _local_days(repo.list_children(template.id)) == [
        date(2025, 12, 4),
        date(2025, 12, 5),
        date(2025, 12, 6),
        date(2025, 12, 7),
        date(2025, 12, 8),
    ]


def test_reopening_clears_completed_at(service) -> None:
    task = service.create_task(1, {"name": "Report"})
    service.mark_done(task.id)

    reopened = service.update_task(task.id, {"status": TaskStatus.IN_PROGRESS})

    assert reopened.completed_at is None


def test_archiving_a_finished_task_keeps_its_completion_time(service) -> None:
    task = service.create_task(1, {"name": "Report"})
    done = service.mark_done(task.id, now=utc(2025, 12, 3, 12))

    archived = service.archive_task(task.id, now=utc(2025, 12, 9))

    assert archived.status == TaskStatus.ARCHIVED
    assert as_utc(archived.completed_at) == as_utc(done.completed_at) == utc(2025, 12, 3, 12)


def test_name_and_priority_edits_reach_only_future_pending_instances(service, repo) -> None:
    template = service.create_task(1, _daily(priority=1))
    past = add_instance(repo, template, utc(2025, 12, 1), status="done", priority=1)
    started = add_instance(repo, template, utc(2025, 12, 2), status="in_progress", priority=1)

    service.update_task(template.id, {"name": "Evening stretch", "priority": 2})

    pending = [child for child in repo.list_children(template.id) if child.id not in (past.id, started.id)]
    assert [child.due_date.date() for child in pending] == [
        date(2025, 12, 4),
        date(2025, 12, 5),
        date(2025, 12, 6),
    ]
    assert {(child.name, child.priority) for child in pending} == {("Evening stretch", 2)}
    assert (repo.get_task(past.id).name, repo.get_task(past.id).priority) == ("Stretch", 1)
    assert (repo.get_task(started.id).name, repo.get_task(started.id).priority) == ("Stretch", 1)


def test_project_edit_on_template_propagates(service, repo) -> None:
    template = service.create_task(1, _daily())
    past = add_instance(repo, template, utc(2025, 12, 2), status="done")

    service.update_task(template.id, {"project_id": 30})

    children = repo.list_children(template.id)
    assert {child.project_id for child in children if child.id != past.id} == {30}
    assert repo.get_task(past.id).project_id == 10


def test_cadence_edit_on_template_regenerates(service, repo) -> None:
    template = service.create_task(1, _daily())
    started = add_instance(repo, template, utc(2025, 12, 3), status="in_progress")

    # 2025-12-03 is a Wednesday; weekday 1 is Monday
    service.update_task(
        template.id, {"recurrence_type": RecurrenceType.WEEKLY, "recurrence_weekday": 1}
    )

    children = repo.list_children(template.id)
    assert children[0].id == started.id
    assert _local_days(children[1:]) == [date(2025, 12, 8), date(2025, 12, 15), date(2025, 12, 22)]


def test_turning_recurrence_off_detaches_history(service, repo) -> None:
    template = service.create_task(1, _daily())
    past = add_instance(repo, template, utc(2025, 12, 1), status="done")

    task = service.update_task(template.id, {"recurrence_type": RecurrenceType.NONE})

    assert not task.is_template
    assert repo.list_children(template.id) == []
    assert repo.get_task(past.id).recurring_parent_id is None


def test_invalid_rule_edit_leaves_template_untouched(service, repo) -> None:
    template = service.create_task(1, _daily())

    with pytest.raises(InvalidRuleError):
        service.update_task(template.id, {"recurrence_month_day": 40})

    assert repo.get_task(template.id).recurrence_month_day is None
    assert len(repo.list_children(template.id)) == 3


def test_stale_version_is_rejected(service) -> None:
    template = service.create_task(1, _daily())
    service.update_task(template.id, {"name": "Stretch more"})

    with pytest.raises(ConcurrentModificationError):
        service.update_task(template.id, {"name": "Lost update"}, expected_version=template.version)

    assert service.get_task(template.id).name == "Stretch more"


def test_deleting_a_template_uses_the_partition(service, repo) -> None:
    template = service.create_task(1, _daily())
    past = add_instance(repo, template, utc(2025, 12, 2), status="completed")

    result = service.delete_task(template.id)

    assert (result.deleted_count, result.orphaned_count) == (3, 1)
    assert repo.get_task(past.id).recurring_parent_id is None


def test_deleting_a_task_removes_its_subtasks(service, repo) -> None:
    parent = service.create_task(1, {"name": "Move house"})
    child = add_task(repo, name="Pack books", parent_task_id=parent.id)

    service.delete_task(parent.id)

    assert service.get_task(parent.id) is None
    assert service.get_task(child.id) is None


def test_tasks_are_scoped_to_their_owner(service) -> None:
    task = service.create_task(1, {"name": "Private"})

    assert service.get_task(task.id, user_id=2) is None
    assert service.update_task(task.id, {"name": "Hijack"}, user_id=2) is None
    assert service.delete_task(task.id, user_id=2) is None


def test_list_filters_split_templates_and_instances(service) -> None:
    template = service.create_task(1, _daily())

    templates = service.list_tasks(TaskFilters(user_id=1, filter_key="templates"))
    instances = service.list_tasks(TaskFilters(user_id=1, filter_key="instances"))

    assert [task.id for task in templates] == [template.id]
    assert len(instances) == 3
    assert service.list_tasks(TaskFilters(user_id=2)) == []


def test_next_iterations_previews_a_template(service) -> None:
    template = service.create_task(
        1, _daily(recurrence_type=RecurrenceType.MONTHLY, recurrence_month_day=31)
    )

    preview = service.next_iterations(template.id, count=3)

    assert [o.local_date for o in preview] == [
        date(2025, 12, 31),
        date(2026, 1, 31),
        date(2026, 2, 28),
    ]
