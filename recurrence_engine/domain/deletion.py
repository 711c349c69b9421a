"""Split a template's children into instances to drop and instances to keep.

The same boundary serves template deletion and cadence regeneration: an
instance is disposable only when the user has not started it and its due
date falls on a later local day than "now". Anything due today or earlier,
anything already started or finished, and anything without a due date is
kept.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Generic, Protocol, TypeVar

from .calendar import local_date
from .enums import PENDING_STATUSES, TaskStatus


class ChildLike(Protocol):
    due_date: datetime | None
    status: str


ChildT = TypeVar("ChildT", bound=ChildLike)


@dataclass(frozen=True)
class ChildPartition(Generic[ChildT]):
    to_delete: tuple[ChildT, ...]
    to_orphan: tuple[ChildT, ...]


def is_future_pending(child: ChildLike, today: date, tz: tzinfo) -> bool:
    if child.due_date is None:
        return False
    if TaskStatus(child.status) not in PENDING_STATUSES:
        return False
    return local_date(child.due_date, tz) > today


def partition_children(
    children: Iterable[ChildT], now: datetime, tz: tzinfo
) -> ChildPartition[ChildT]:
    today = local_date(now, tz)
    to_delete: list[ChildT] = []
    to_orphan: list[ChildT] = []
    for child in children:
        if is_future_pending(child, today, tz):
            to_delete.append(child)
        else:
            to_orphan.append(child)
    return ChildPartition(to_delete=tuple(to_delete), to_orphan=tuple(to_orphan))
