"""Recurrence descriptors and their validation.

A descriptor is stored on the task row as a handful of ``recurrence_*``
columns. :class:`RecurrenceRule` gathers them into one immutable value that
the calendar code can consume once :meth:`RecurrenceRule.validate` has
accepted it.

Weekdays follow the stored convention ``0 = Sunday … 6 = Saturday``.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

from .enums import RecurrenceType
from .errors import InvalidRuleError

# Task column -> RecurrenceRule attribute
RULE_COLUMNS: dict[str, str] = {
    "recurrence_type": "type",
    "recurrence_interval": "interval",
    "recurrence_month_day": "month_day",
    "recurrence_weekday": "week_day",
    "recurrence_weekdays": "weekdays",
    "recurrence_month": "month",
    "recurrence_week_of_month": "week_of_month",
    "recurrence_end_date": "end_date",
}

LAST_WEEK_OF_MONTH = 5


def is_template(recurrence_type: object, recurring_parent_id: int | None) -> bool:
    """A task is a template iff it recurs and is not itself an instance."""
    return (
        recurrence_type is not None
        and recurrence_type != RecurrenceType.NONE.value
        and recurring_parent_id is None
    )


def parse_weekdays(raw: str | Iterable[int] | None) -> tuple[int, ...]:
    if raw is None or raw == "":
        return ()
    if isinstance(raw, str):
        try:
            values = [int(part) for part in raw.split(",") if part.strip()]
        except ValueError as exc:
            raise InvalidRuleError(f"Invalid weekday list: {raw!r}") from exc
    else:
        values = [int(value) for value in raw]
    return tuple(sorted(set(values)))


def format_weekdays(weekdays: Iterable[int]) -> str | None:
    values = parse_weekdays(list(weekdays))
    return ",".join(str(value) for value in values) or None


def _check_range(name: str, value: int | None, low: int, high: int) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRuleError(f"{name} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise InvalidRuleError(f"{name} must be between {low} and {high}, got {value}")


@dataclass(frozen=True)
class RecurrenceRule:
    type: RecurrenceType = RecurrenceType.NONE
    interval: int = 1
    month_day: int | None = None
    week_day: int | None = None
    weekdays: tuple[int, ...] = ()
    month: int | None = None
    week_of_month: int | None = None
    end_date: date | None = None

    @property
    def is_recurring(self) -> bool:
        return self.type != RecurrenceType.NONE

    @classmethod
    def from_fields(cls, values: Mapping[str, Any]) -> RecurrenceRule:
        """Build a rule from ``recurrence_*`` column values. Missing keys keep defaults."""
        kwargs: dict[str, Any] = {}
        for column, attr in RULE_COLUMNS.items():
            if column in values and values[column] is not None:
                kwargs[attr] = values[column]

        raw_type = kwargs.get("type", RecurrenceType.NONE)
        try:
            kwargs["type"] = RecurrenceType(raw_type)
        except ValueError as exc:
            raise InvalidRuleError(f"Unknown recurrence type: {raw_type!r}") from exc
        if "weekdays" in kwargs:
            kwargs["weekdays"] = parse_weekdays(kwargs["weekdays"])
        return cls(**kwargs)

    def to_fields(self) -> dict[str, Any]:
        values = {column: getattr(self, attr) for column, attr in RULE_COLUMNS.items()}
        values["recurrence_type"] = self.type.value
        values["recurrence_weekdays"] = format_weekdays(self.weekdays)
        return values

    def validate(self) -> RecurrenceRule:
        """Return ``self`` if the rule is usable, otherwise raise :class:`InvalidRuleError`."""
        if not isinstance(self.type, RecurrenceType):
            raise InvalidRuleError(f"Unknown recurrence type: {self.type!r}")
        _check_range("interval", self.interval, 1, 10_000)
        _check_range("month_day", self.month_day, 1, 31)
        _check_range("week_day", self.week_day, 0, 6)
        _check_range("month", self.month, 1, 12)
        _check_range("week_of_month", self.week_of_month, 1, LAST_WEEK_OF_MONTH)
        for weekday in self.weekdays:
            _check_range("weekdays", weekday, 0, 6)
        if self.end_date is not None and not isinstance(self.end_date, date):
            raise InvalidRuleError(f"end_date must be a date, got {self.end_date!r}")

        if self.type == RecurrenceType.MONTHLY_WEEKDAY and self.week_of_month is None:
            raise InvalidRuleError("monthly_weekday recurrence requires week_of_month")
        if self.type == RecurrenceType.YEARLY and self.month_day is not None and self.month is None:
            raise InvalidRuleError("yearly recurrence with month_day requires month")
        return self


def rule_from_task(task: object) -> RecurrenceRule:
    """Read the recurrence descriptor off anything carrying ``recurrence_*`` attributes."""
    return RecurrenceRule.from_fields(
        {column: getattr(task, column, None) for column in RULE_COLUMNS}
    )
