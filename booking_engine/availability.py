"""Two-week slot grid built from a doctor's weekly schedule.

Each business week (Mon-Sat) is handled on its own: a week with no schedule
entries at all falls back to the clinic's default hours, a week with at least
one entry only opens the dates that have one.
"""
from __future__ import annotations
import logging
from datetime import date, time, timedelta
from typing import Iterable
from .models import DaySchedule, TimeSlot, WeeklyScheduleEntry

logger = logging.getLogger(__name__)

SLOT_MINUTES = 10
DAYS_PER_WEEK = 6  # Monday..Saturday
DEFAULT_START = time(7, 0)
DEFAULT_END = time(17, 0)

WEEK_LABELS = ("This week", "Next week")
_DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def week_start(ref: date) -> date:
    """Monday of the week containing ``ref`` (a Sunday belongs to the week before)."""
    return ref - timedelta(days=ref.weekday())


def build_week_dates(ref: date) -> list[list[date]]:
    """Mon-Sat of the week containing ``ref`` and of the following week."""
    monday = week_start(ref)
    return [
        [monday + timedelta(days=7 * week + offset) for offset in range(DAYS_PER_WEEK)]
        for week in range(len(WEEK_LABELS))
    ]


def format_day_label(day: date) -> str:
    return f"{_DAY_NAMES[day.weekday()]}, {day:%d-%m}"


def _merge_intervals(intervals: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    merged: list[list[int]] = []
    for start, end in sorted(i for i in intervals if i[1] > i[0]):
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [(start, end) for start, end in merged]


def generate_slots(intervals: Iterable[tuple[time, time]]) -> list[TimeSlot]:
    """Cut working intervals into contiguous 10-minute cells.

    Overlapping or touching intervals are merged first; a tail shorter than
    one cell is dropped.
    """
    slots = []
    for start, end in _merge_intervals((to_minutes(s), to_minutes(e)) for s, e in intervals):
        cursor = start
        while cursor + SLOT_MINUTES <= end:
            slots.append(TimeSlot(
                start_time=from_minutes(cursor),
                end_time=from_minutes(cursor + SLOT_MINUTES),
            ))
            cursor += SLOT_MINUTES
    return slots


def compute_availability(
    doctor_id: str | None,
    today: date,
    entries: Iterable[WeeklyScheduleEntry] = (),
) -> list[DaySchedule]:
    """Return the bookable days from ``today`` to the end of next week.

    ``doctor_id=None`` is used for preventive bookings, which always run on
    the default clinic hours.
    """
    by_date: dict[date, list[tuple[time, time]]] = {}
    if doctor_id is not None:
        for entry in entries:
            by_date.setdefault(entry.work_date, []).append((entry.start_time, entry.end_time))

    days = []
    for week_label, week in zip(WEEK_LABELS, build_week_dates(today)):
        use_template = not any(day in by_date for day in week)
        if use_template:
            logger.debug("No schedule for doctor %s in week of %s, using default hours", doctor_id, week[0])
        for day in week:
            if day < today:
                continue
            if use_template:
                intervals = [(DEFAULT_START, DEFAULT_END)]
            else:
                intervals = by_date.get(day, [])
            days.append(DaySchedule(
                date=day,
                label=format_day_label(day),
                week_label=week_label,
                slots=generate_slots(intervals),
                has_api_schedule=day in by_date,
            ))
    return days


def pick_initial_day(days: list[DaySchedule], today: date) -> int:
    """Index of the day to preselect: today if it has slots, else the first open day."""
    for index, day in enumerate(days):
        if day.date == today and day.slots:
            return index
    for index, day in enumerate(days):
        if day.has_available_slot:
            return index
    return 0
