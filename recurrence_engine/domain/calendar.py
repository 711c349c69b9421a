"""Calendar arithmetic for recurrence rules.

Occurrences are computed on local calendar days of the rule's timezone and
only then turned into UTC instants, resolving the UTC offset separately for
every day so that series crossing a DST transition keep their local time.

Everything here is a pure function of its arguments: the caller supplies
"now" (``from_instant``) and the series anchor, so the same inputs always
produce the same sequence.
"""
from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from .enums import RecurrenceType
from .errors import InvalidRuleError, TimezoneResolutionError
from .recurrence import LAST_WEEK_OF_MONTH, RecurrenceRule

# Indexed with the stored weekday convention (0 = Sunday).
_WEEKDAYS = (SU, MO, TU, WE, TH, FR, SA)


@dataclass(frozen=True)
class Occurrence:
    local_date: date
    due_at: datetime


def resolve_timezone(name: str | tzinfo | None) -> tzinfo:
    if isinstance(name, tzinfo):
        return name
    if not name or not isinstance(name, str):
        raise TimezoneResolutionError(name)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        # Directory names such as "America" surface as OSError.
        raise TimezoneResolutionError(name) from exc


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive values (as SQLite hands them back) and normalise aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(instant: datetime, tz: tzinfo) -> date:
    return as_utc(instant).astimezone(tz).date()


def to_instant(day: date, tz: tzinfo, time_of_day: time = time(0, 0)) -> datetime:
    return datetime.combine(day, time_of_day, tzinfo=tz).astimezone(timezone.utc)


def sunday_weekday(day: date) -> int:
    return (day.weekday() + 1) % 7


def week_start(day: date) -> date:
    return day - timedelta(days=sunday_weekday(day))


def _daily_days(rule: RecurrenceRule, anchor: date, start: date) -> Iterator[date]:
    step = rule.interval
    skipped = max(0, (start - anchor).days // step)
    day = anchor + timedelta(days=skipped * step)
    while True:
        yield day
        day += timedelta(days=step)


def _weekly_days(rule: RecurrenceRule, anchor: date, start: date) -> Iterator[date]:
    if rule.weekdays:
        weekdays = rule.weekdays
    elif rule.week_day is not None:
        weekdays = (rule.week_day,)
    else:
        weekdays = (sunday_weekday(anchor),)

    step = 7 * rule.interval
    base = week_start(anchor)
    block = max(0, (week_start(start) - base).days // step)
    while True:
        first = base + timedelta(days=block * step)
        for weekday in weekdays:
            day = first + timedelta(days=weekday)
            if day >= anchor:
                yield day
        block += 1


def _nth_weekday(first: date, weekday: int, nth: int) -> date:
    last = first + relativedelta(day=31, weekday=_WEEKDAYS[weekday](-1))
    if nth >= LAST_WEEK_OF_MONTH:
        return last
    day = first + relativedelta(weekday=_WEEKDAYS[weekday](+nth))
    # A fifth Friday may not exist; fall back to the last one.
    return day if day.month == first.month else last


def _month_day_picker(rule: RecurrenceRule, anchor: date):
    if rule.type == RecurrenceType.MONTHLY_LAST_DAY:
        return lambda first: first + relativedelta(day=31)
    if rule.type == RecurrenceType.MONTHLY_WEEKDAY:
        weekday = rule.week_day if rule.week_day is not None else sunday_weekday(anchor)
        return lambda first: _nth_weekday(first, weekday, rule.week_of_month)
    # relativedelta clamps day=31 to the last day of shorter months
    month_day = rule.month_day or anchor.day
    return lambda first: first + relativedelta(day=month_day)


def _monthly_days(rule: RecurrenceRule, anchor: date, start: date) -> Iterator[date]:
    pick = _month_day_picker(rule, anchor)
    step = rule.interval
    anchor_month = anchor.replace(day=1)
    elapsed = (start.year - anchor.year) * 12 + start.month - anchor.month
    period = max(0, elapsed // step)
    while True:
        day = pick(anchor_month + relativedelta(months=period * step))
        if day >= anchor:
            yield day
        period += 1


def _yearly_days(rule: RecurrenceRule, anchor: date, start: date) -> Iterator[date]:
    month = rule.month or anchor.month
    month_day = rule.month_day or anchor.day
    step = rule.interval
    period = max(0, (start.year - anchor.year) // step)
    while True:
        year = anchor.year + period * step
        day = date(year, month, 1) + relativedelta(day=month_day)
        if day >= anchor:
            yield day
        period += 1


_CANDIDATES = {
    RecurrenceType.DAILY: _daily_days,
    RecurrenceType.WEEKLY: _weekly_days,
    RecurrenceType.MONTHLY: _monthly_days,
    RecurrenceType.MONTHLY_WEEKDAY: _monthly_days,
    RecurrenceType.MONTHLY_LAST_DAY: _monthly_days,
    RecurrenceType.YEARLY: _yearly_days,
}


def iter_occurrences(
    rule: RecurrenceRule,
    from_instant: datetime,
    tz: str | tzinfo | None,
    count: int | None,
    *,
    anchor: date | None = None,
    time_of_day: time = time(0, 0),
) -> Iterator[Occurrence]:
    """Return a lazy, ascending iterator over occurrences strictly after ``from_instant``.

    ``anchor`` is the local date the series starts from; interval alignment
    is counted from it and no occurrence precedes it. It defaults to the
    local date of ``from_instant``.

    The sequence stops after ``count`` items or past ``rule.end_date``
    (inclusive), whichever comes first. The rule and timezone are checked
    before the iterator is returned, so bad input fails without producing
    anything.
    """
    rule.validate()
    zone = resolve_timezone(tz)
    if count is None and rule.end_date is None:
        raise InvalidRuleError("an occurrence count or an end_date is required")
    if not rule.is_recurring or (count is not None and count <= 0):
        return iter(())

    now = as_utc(from_instant)
    start = now.astimezone(zone).date()
    days = _CANDIDATES[rule.type](rule, anchor or start, start)
    return _emit(days, rule.end_date, zone, now, count, time_of_day)


def _until_calendar_end(days: Iterator[date]) -> Iterator[date]:
    """Stop quietly where stepping the series would pass year 9999."""
    try:
        yield from days
    except (OverflowError, ValueError):
        return


def _emit(
    days: Iterator[date],
    end_date: date | None,
    zone: tzinfo,
    now: datetime,
    count: int | None,
    time_of_day: time,
) -> Iterator[Occurrence]:
    emitted = 0
    for day in _until_calendar_end(days):
        if end_date is not None and day > end_date:
            return
        try:
            due_at = to_instant(day, zone, time_of_day)
        except OverflowError:
            return
        # A target equal to "now" has already passed.
        if due_at <= now:
            continue
        yield Occurrence(local_date=day, due_at=due_at)
        emitted += 1
        if count is not None and emitted >= count:
            return


def next_occurrences(
    rule: RecurrenceRule,
    from_instant: datetime,
    tz: str | tzinfo | None,
    count: int | None,
    *,
    anchor: date | None = None,
    time_of_day: time = time(0, 0),
) -> Iterator[datetime]:
    """UTC instants of :func:`iter_occurrences`."""
    occurrences = iter_occurrences(
        rule, from_instant, tz, count, anchor=anchor, time_of_day=time_of_day
    )
    return (occurrence.due_at for occurrence in occurrences)
