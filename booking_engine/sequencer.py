"""Lay out a selected service set as a non-overlapping timeline for one day."""
from __future__ import annotations
import logging
from datetime import date, datetime
from typing import Iterable, Sequence
from .availability import from_minutes, to_minutes
from .conflicts import check_selection
from .errors import ConfigurationError
from .models import (
    Appointment,
    BookingType,
    ConflictReason,
    ConsultationSlot,
    MedicalExamination,
    MultiStepTimeline,
    ServiceRole,
    ServiceSlot,
    ServiceType,
    TimeSlot,
)

logger = logging.getLogger(__name__)

SERVICE_GAP_MINUTES = 5
DEFAULT_SERVICE_MINUTES = 30
DEFAULT_CONSULTATION_MINUTES = 10
SHORT_SERVICE_MINUTES = 30
MINUTES_PER_DAY = 24 * 60

# Legacy catalogues carry no role; the consultation is the one named "Khám ..."
_CONSULTATION_NAME_HINTS = ("khám", "consult")


def find_consultation_service(services: Iterable[MedicalExamination]) -> MedicalExamination | None:
    """The service tagged CONSULTATION, falling back to a name match for untagged catalogues."""
    services = list(services)
    for service in services:
        if service.role == ServiceRole.CONSULTATION:
            return service
    for service in services:
        if service.role is None and any(hint in service.name.lower() for hint in _CONSULTATION_NAME_HINTS):
            logger.warning("Service %s (%s) resolved as consultation by name; tag it with a role", service.id, service.name)
            return service
    return None


def require_consultation_service(services: Iterable[MedicalExamination], specialty: str | None = None) -> MedicalExamination:
    service = find_consultation_service(services)
    if service is None:
        raise ConfigurationError(f"No consultation service configured for specialty {specialty or '<unknown>'}")
    return service


def service_priority(service: MedicalExamination) -> int:
    """1: WAIT & short, 2: WAIT & long, 3: STAY & short, 4: STAY & long."""
    short = (service.min_duration or 0) < SHORT_SERVICE_MINUTES
    if service.type == ServiceType.STAY:
        return 3 if short else 4
    return 1 if short else 2


def order_services(services: Iterable[MedicalExamination]) -> list[MedicalExamination]:
    # sorted() is stable, so equal keys keep their input order
    return sorted(services, key=lambda s: (service_priority(s), s.min_duration or 0))


def _window_covered(day_grid: Sequence[TimeSlot], start: int, end: int) -> bool:
    """True when available grid cells cover [start, end) without a hole."""
    cursor = start
    for slot in sorted(day_grid, key=lambda s: s.start_time):
        if cursor >= end:
            break
        slot_start, slot_end = to_minutes(slot.start_time), to_minutes(slot.end_time)
        if slot_end <= cursor:
            continue
        if slot_start > cursor or not slot.available:
            return False
        cursor = slot_end
    return cursor >= end


def _blocking_reason(day_grid: Sequence[TimeSlot], start: int, end: int) -> ConflictReason | None:
    for slot in sorted(day_grid, key=lambda s: s.start_time):
        if not slot.available and to_minutes(slot.start_time) < end and to_minutes(slot.end_time) > start:
            return slot.reason
    return None


def _place_consultation(
    day_grid: Sequence[TimeSlot],
    earliest: int,
    duration: int,
    work_date: date | None,
    patient_appointments: Sequence[Appointment],
    now: datetime | None,
) -> ConsultationSlot | None:
    for slot in sorted(day_grid, key=lambda s: s.start_time):
        start = to_minutes(slot.start_time)
        end = start + duration
        if start < earliest or not slot.available or end >= MINUTES_PER_DAY:
            continue
        if not _window_covered(day_grid, start, end):
            continue
        if work_date is not None:
            verdict = check_selection(work_date, slot.start_time, from_minutes(end), patient_appointments, now)
            if not verdict.available:
                continue
        return ConsultationSlot(start_time=slot.start_time, end_time=from_minutes(end))
    return None


def sequence_services(
    services: Sequence[MedicalExamination],
    start_slot: TimeSlot,
    day_grid: Sequence[TimeSlot] = (),
    booking_type: BookingType = BookingType.SERVICE_AND_CONSULTATION,
    work_date: date | None = None,
    patient_appointments: Sequence[Appointment] = (),
    now: datetime | None = None,
) -> MultiStepTimeline:
    """Build the timeline for a booking starting at ``start_slot``.

    CONSULTATION_ONLY gives one window of the consultation's length.
    SERVICE_AND_CONSULTATION places every diagnostic service back to back by
    priority, 5 minutes apart, then the earliest consultation slot that
    starts at least 5 minutes after the last one ends. PREVENTIVE_SERVICE
    places the services the same way without a consultation.

    A window that collides with the patient's own bookings or the past, or a
    missing consultation slot, yields ``is_valid=False`` rather than raising.
    """
    start = to_minutes(start_slot.start_time)

    if not start_slot.available:
        return _invalid(booking_type, start, start_slot.reason)

    if booking_type == BookingType.CONSULTATION_ONLY:
        consultation = find_consultation_service(services) or (services[0] if services else None)
        duration = (consultation.min_duration if consultation else None) or DEFAULT_CONSULTATION_MINUTES
        end = start + duration
        if end >= MINUTES_PER_DAY:
            return _invalid(booking_type, start, None)
        reason = _span_conflict(work_date, start, end, patient_appointments, now)
        valid = reason is None
        if valid and day_grid and not _window_covered(day_grid, start, end):
            # a blocked cell keeps its own reason; running past working hours has none
            valid = False
            reason = _blocking_reason(day_grid, start, end)
        return MultiStepTimeline(
            booking_type=booking_type,
            consultation_slot=ConsultationSlot(start_time=from_minutes(start), end_time=from_minutes(end)),
            start_time=from_minutes(start),
            end_time=from_minutes(end),
            total_duration=duration,
            is_valid=valid,
            reason=reason,
        )

    consultation = None
    diagnostics = list(services)
    if booking_type == BookingType.SERVICE_AND_CONSULTATION:
        consultation = require_consultation_service(services)
        diagnostics = [s for s in services if s.id != consultation.id]

    service_slots = []
    cursor = start
    for service in order_services(diagnostics):
        duration = service.min_duration or DEFAULT_SERVICE_MINUTES
        if cursor + duration >= MINUTES_PER_DAY:
            logger.info("Services starting %s run past midnight", start_slot.start_time)
            return _invalid(booking_type, start, None, service_slots)
        service_slots.append(ServiceSlot(
            service_id=service.id,
            service_name=service.name,
            start_time=from_minutes(cursor),
            end_time=from_minutes(cursor + duration),
            duration=duration,
        ))
        cursor += duration + SERVICE_GAP_MINUTES

    span_end = to_minutes(service_slots[-1].end_time) if service_slots else start
    reason = _span_conflict(work_date, start, span_end, patient_appointments, now) if service_slots else None
    if reason is not None:
        return _invalid(booking_type, start, reason, service_slots)

    if consultation is None:
        return MultiStepTimeline(
            booking_type=booking_type,
            service_slots=service_slots,
            start_time=from_minutes(start),
            end_time=from_minutes(span_end),
            total_duration=span_end - start,
        )

    earliest = span_end + SERVICE_GAP_MINUTES if service_slots else start
    consultation_slot = _place_consultation(
        day_grid,
        earliest,
        consultation.min_duration or DEFAULT_CONSULTATION_MINUTES,
        work_date,
        patient_appointments,
        now,
    )
    if consultation_slot is None:
        logger.info("No consultation slot after %s on %s", from_minutes(earliest), work_date)
        return _invalid(booking_type, start, None, service_slots)

    end = to_minutes(consultation_slot.end_time)
    return MultiStepTimeline(
        booking_type=booking_type,
        service_slots=service_slots,
        consultation_slot=consultation_slot,
        start_time=from_minutes(start),
        end_time=consultation_slot.end_time,
        total_duration=end - start,
    )


def _span_conflict(work_date, start, end, patient_appointments, now) -> ConflictReason | None:
    if work_date is None:
        return None
    verdict = check_selection(work_date, from_minutes(start), from_minutes(end), patient_appointments, now)
    return verdict.reason


def _invalid(booking_type, start, reason, service_slots=()) -> MultiStepTimeline:
    end = to_minutes(service_slots[-1].end_time) if service_slots else start
    return MultiStepTimeline(
        booking_type=booking_type,
        service_slots=list(service_slots),
        start_time=from_minutes(start),
        end_time=from_minutes(end),
        total_duration=end - start,
        is_valid=False,
        reason=reason,
    )
