from datetime import date, time
from booking_engine.availability import (
    build_week_dates,
    compute_availability,
    format_day_label,
    generate_slots,
    pick_initial_day,
    to_minutes,
)
from booking_engine.models import TimeSlot, WeeklyScheduleEntry

MONDAY = date(2025, 6, 2)


def _entry(day, start, end):
    return WeeklyScheduleEntry(work_date=day, start_time=start, end_time=end)


def test_week_dates_are_monday_to_saturday():
    weeks = build_week_dates(date(2025, 6, 5))
    assert weeks[0][0] == MONDAY
    assert weeks[0][-1] == date(2025, 6, 7)
    assert weeks[1][0] == date(2025, 6, 9)
    assert all(len(week) == 6 for week in weeks)


def test_sunday_belongs_to_previous_week():
    assert build_week_dates(date(2025, 6, 8))[0][0] == MONDAY


def test_day_label():
    assert format_day_label(MONDAY) == "Mon, 02-06"
    assert format_day_label(date(2025, 6, 7)) == "Sat, 07-06"


def test_no_entries_uses_default_hours_for_both_weeks():
    days = compute_availability("doc-1", MONDAY, [])
    assert len(days) == 12
    assert all(d.date.weekday() != 6 for d in days)
    for day in days:
        assert day.slots[0].start_time == time(7, 0)
        assert day.slots[-1].end_time == time(17, 0)
        assert len(day.slots) == 60
        assert not day.has_api_schedule
    assert [d.week_label for d in days[:6]] == ["This week"] * 6
    assert [d.week_label for d in days[6:]] == ["Next week"] * 6


def test_single_entry_only_opens_that_day():
    days = compute_availability("doc-1", MONDAY, [_entry(MONDAY, time(8), time(10))])
    first_week = days[:6]
    assert first_week[0].has_api_schedule
    assert [(s.start_time, s.end_time) for s in first_week[0].slots][0] == (time(8), time(8, 10))
    assert first_week[0].slots[-1].end_time == time(10)
    assert len(first_week[0].slots) == 12
    assert all(d.slots == [] for d in first_week[1:])
    # the following week has no entries and falls back to default hours
    assert all(len(d.slots) == 60 for d in days[6:])


def test_slots_are_contiguous_ten_minute_cells():
    slots = generate_slots([(time(13, 30), time(16, 0))])
    for slot in slots:
        assert to_minutes(slot.end_time) - to_minutes(slot.start_time) == 10
    for prev, nxt in zip(slots, slots[1:]):
        assert prev.end_time == nxt.start_time


def test_short_tail_is_dropped():
    slots = generate_slots([(time(8, 0), time(8, 25))])
    assert [s.start_time for s in slots] == [time(8, 0), time(8, 10)]


def test_overlapping_intervals_are_merged():
    slots = generate_slots([(time(8, 30), time(9, 30)), (time(8, 0), time(9, 0))])
    starts = [s.start_time for s in slots]
    assert len(starts) == len(set(starts)) == 9
    assert starts[0] == time(8, 0)


def test_past_days_are_dropped():
    days = compute_availability("doc-1", date(2025, 6, 4), [])
    assert days[0].date == date(2025, 6, 4)
    assert len(days) == 10


def test_on_sunday_only_next_week_is_offered():
    days = compute_availability("doc-1", date(2025, 6, 8), [])
    assert len(days) == 6
    assert days[0].date == date(2025, 6, 9)
    assert {d.week_label for d in days} == {"Next week"}


def test_preventive_booking_ignores_entries():
    days = compute_availability(None, MONDAY, [_entry(MONDAY, time(8), time(10))])
    assert len(days[0].slots) == 60
    assert len(days[1].slots) == 60


def test_pick_initial_day_prefers_today():
    days = compute_availability("doc-1", MONDAY, [_entry(MONDAY, time(8), time(10))])
    assert pick_initial_day(days, MONDAY) == 0


def test_pick_initial_day_skips_to_first_open_day():
    days = compute_availability("doc-1", MONDAY, [_entry(date(2025, 6, 4), time(8), time(10))])
    assert pick_initial_day(days, MONDAY) == 2


def test_pick_initial_day_skips_fully_booked_days():
    days = compute_availability("doc-1", MONDAY, [_entry(date(2025, 6, 3), time(8), time(9))])
    days[1] = days[1].model_copy(update={
        "slots": [TimeSlot(start_time=s.start_time, end_time=s.end_time, available=False) for s in days[1].slots],
    })
    # nothing open this week, so the first day of next week
    assert pick_initial_day(days, MONDAY) == 6


def test_pick_initial_day_defaults_to_zero():
    assert pick_initial_day([], MONDAY) == 0
