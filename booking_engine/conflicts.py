"""Mark slots that collide with existing bookings or with the past.

Nothing here raises: every collision is reported as an unavailable slot or a
SlotVerdict carrying the reason.
"""
from __future__ import annotations
from datetime import date, datetime, time
from typing import Iterable
from .models import Appointment, ConflictReason, DaySchedule, SlotVerdict, TimeSlot


def overlaps(start: time, end: time, other_start: time, other_end: time) -> bool:
    """Half-open interval overlap; touching windows do not collide."""
    return start < other_end and end > other_start


def active_parents(appointments: Iterable[Appointment], work_date: date | None = None) -> list[Appointment]:
    """Non-cancelled top-level appointments, optionally limited to one date."""
    return [
        apt for apt in appointments
        if not apt.is_cancelled
        and apt.is_parent
        and (work_date is None or apt.work_date == work_date)
    ]


def _collides(start: time, end: time, appointments: list[Appointment]) -> bool:
    return any(overlaps(start, end, apt.start_time, apt.end_time) for apt in appointments)


def _wall_clock(now: datetime) -> datetime:
    # slot times are naive clinic-local times
    if now.tzinfo is not None:
        return now.astimezone().replace(tzinfo=None)
    return now


def _disable(slot: TimeSlot, reason: ConflictReason) -> TimeSlot:
    if not slot.available:
        return slot
    return slot.model_copy(update={"available": False, "reason": reason})


def apply_doctor_bookings(day: DaySchedule, appointments: Iterable[Appointment]) -> DaySchedule:
    booked = active_parents(appointments, day.date)
    slots = [
        _disable(slot, ConflictReason.DOCTOR_BOOKED)
        if _collides(slot.start_time, slot.end_time, booked) else slot
        for slot in day.slots
    ]
    return day.model_copy(update={"slots": slots})


def apply_past_time(day: DaySchedule, now: datetime) -> DaySchedule:
    now = _wall_clock(now)
    slots = [
        _disable(slot, ConflictReason.PAST_TIME)
        if datetime.combine(day.date, slot.start_time) < now else slot
        for slot in day.slots
    ]
    return day.model_copy(update={"slots": slots})


def filter_day(day: DaySchedule, doctor_appointments: Iterable[Appointment], now: datetime | None = None) -> DaySchedule:
    day = apply_doctor_bookings(day, doctor_appointments)
    if now is not None:
        day = apply_past_time(day, now)
    return day


def check_selection(
    work_date: date,
    start: time,
    end: time,
    patient_appointments: Iterable[Appointment] = (),
    now: datetime | None = None,
    doctor_appointments: Iterable[Appointment] = (),
) -> SlotVerdict:
    """Verdict for a full, duration-adjusted window the patient wants to book.

    The patient's own appointments are checked across every doctor.
    """
    if now is not None and datetime.combine(work_date, start) < _wall_clock(now):
        return SlotVerdict(available=False, reason=ConflictReason.PAST_TIME)
    if _collides(start, end, active_parents(doctor_appointments, work_date)):
        return SlotVerdict(available=False, reason=ConflictReason.DOCTOR_BOOKED)
    if _collides(start, end, active_parents(patient_appointments, work_date)):
        return SlotVerdict(available=False, reason=ConflictReason.PATIENT_CONFLICT)
    return SlotVerdict(available=True)
