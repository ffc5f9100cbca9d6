from datetime import date
import threading

from app.models.timetable_entry import Weekday
from app.services.week_guard import WeekGuardRegistry
from app.services.weeks import (
    date_for,
    is_past_week,
    slot_sort_key,
    upcoming_week_starts,
    week_end_for,
    week_start_for,
    weekday_for,
)


def test_week_boundaries():
    thursday = date(2026, 10, 22)

    assert week_start_for(thursday) == date(2026, 10, 19)
    assert week_end_for(date(2026, 10, 19)) == date(2026, 10, 25)
    assert weekday_for(thursday) == Weekday.thursday
    assert date_for(date(2026, 10, 19), Weekday.friday) == date(2026, 10, 23)


def test_past_and_upcoming_weeks():
    today = date(2026, 10, 21)

    assert is_past_week(date(2026, 10, 18), today) is True
    assert is_past_week(date(2026, 10, 19), today) is False
    assert upcoming_week_starts(3, today) == [
        date(2026, 10, 19),
        date(2026, 10, 26),
        date(2026, 11, 2),
        date(2026, 11, 9),
    ]


def test_slots_sort_by_day_then_period():
    slots = [("tuesday", 1), ("monday", 5), ("monday", 2)]

    assert sorted(slots, key=lambda item: slot_sort_key(*item)) == [("monday", 2), ("monday", 5), ("tuesday", 1)]


def test_guard_serializes_writers_of_the_same_week():
    registry = WeekGuardRegistry()
    key = ("class-1", date(2026, 10, 19))
    order: list[str] = []
    entered = threading.Event()
    release = threading.Event()

    def first():
        with registry.hold([key]):
            order.append("first-in")
            entered.set()
            release.wait(timeout=5)
            order.append("first-out")

    def second():
        entered.wait(timeout=5)
        with registry.hold([key]):
            order.append("second-in")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for thread in threads:
        thread.start()
    entered.wait(timeout=5)
    release.set()
    for thread in threads:
        thread.join(timeout=5)

    assert order == ["first-in", "first-out", "second-in"]


def test_guard_is_reentrant_for_the_same_thread():
    registry = WeekGuardRegistry()
    key = ("class-1", date(2026, 10, 19))

    with registry.hold([key]):
        with registry.hold([key, ("class-2", date(2026, 10, 19))]):
            pass
