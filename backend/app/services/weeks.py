from __future__ import annotations

from datetime import date, timedelta

from app.models.timetable_entry import Weekday

WEEKDAY_ORDER: list[Weekday] = list(Weekday)
SCHOOL_WEEK: list[Weekday] = WEEKDAY_ORDER[:5]
DAY_INDEX: dict[Weekday, int] = {day: index for index, day in enumerate(WEEKDAY_ORDER)}


def week_start_for(value: date) -> date:
    return value - timedelta(days=value.weekday())


def week_end_for(week_start: date) -> date:
    return week_start + timedelta(days=6)


def weekday_for(value: date) -> Weekday:
    return WEEKDAY_ORDER[value.weekday()]


def date_for(week_start: date, day: Weekday) -> date:
    return week_start + timedelta(days=DAY_INDEX[Weekday(day)])


def current_week_start(today: date | None = None) -> date:
    return week_start_for(today or date.today())


def is_past_week(week_start: date, today: date | None = None) -> bool:
    return week_start_for(week_start) < current_week_start(today)


def upcoming_week_starts(count: int, today: date | None = None) -> list[date]:
    """Current week plus ``count`` following weeks."""
    first = current_week_start(today)
    return [first + timedelta(weeks=offset) for offset in range(count + 1)]


def slot_sort_key(day: Weekday | str, period: int) -> tuple[int, int]:
    return DAY_INDEX[Weekday(day)], period
