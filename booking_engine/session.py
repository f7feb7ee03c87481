"""One patient's booking flow: fetch, transform, and apply only if still current.

Every selection change bumps ``generation``. A fetch that resolves after a
newer selection was made is discarded instead of overwriting fresher state.
"""
from __future__ import annotations
import asyncio
import logging
from datetime import date, datetime
from typing import Callable
from . import client
from .availability import compute_availability, from_minutes, pick_initial_day, to_minutes
from .composer import compose_booking, submit_booking
from .conflicts import check_selection, filter_day
from .errors import DataUnavailableError
from .models import (
    Appointment,
    BookingType,
    DaySchedule,
    MedicalExamination,
    MedicalServicesRequest,
    MultiStepTimeline,
    PriceBreakdown,
    TimeSlot,
)
from .pricing import price_booking
from .sequencer import DEFAULT_CONSULTATION_MINUTES, require_consultation_service, sequence_services
from .storage import DraftStore, draft_key

logger = logging.getLogger(__name__)


class BookingSession:
    def __init__(
        self,
        patient_id: str,
        specialty: str | None = None,
        backend=client,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.patient_id = patient_id
        self.specialty = specialty
        self.backend = backend
        self.clock = clock

        self.generation = 0
        # service loads are gated separately so they never cancel a day fetch
        self._services_generation = 0
        self.loading = False
        self.error: str | None = None

        self.doctor_id: str | None = None
        self.days: list[DaySchedule] = []
        # unfiltered grid; a day is always re-filtered from here
        self._raw_days: list[DaySchedule] = []
        self.selected_day_index: int | None = None
        self.doctor_appointments: list[Appointment] | None = None
        self.patient_appointments: list[Appointment] | None = None

        self.booking_type: BookingType | None = None
        self.services: list[MedicalExamination] = []
        self.consultation_service: MedicalExamination | None = None
        self.selected_services: list[MedicalExamination] = []
        self.timeline: MultiStepTimeline | None = None

    # -- generation gate ----------------------------------------------------

    def _begin(self) -> int:
        self.generation += 1
        self.loading = True
        self.error = None
        return self.generation

    def _is_current(self, generation: int, what: str) -> bool:
        if generation != self.generation:
            logger.debug("Discarding stale %s result (generation %s, now %s)", what, generation, self.generation)
            return False
        return True

    # -- selection ----------------------------------------------------------

    @property
    def selected_day(self) -> DaySchedule | None:
        if self.selected_day_index is None or not self.days:
            return None
        return self.days[self.selected_day_index]

    async def select_doctor(self, doctor_id: str | None, today: date | None = None) -> list[DaySchedule]:
        """Load the two-week grid for a doctor (None: default clinic hours) and preselect a day."""
        generation = self._begin()
        today = today or self.clock().date()
        self.timeline = None
        self.doctor_appointments = None

        entries = []
        if doctor_id is not None:
            try:
                entries = await self.backend.fetch_weekly_schedule(doctor_id)
            except DataUnavailableError as exc:
                if not self._is_current(generation, "schedule"):
                    return self.days
                logger.warning("Schedule for doctor %s unavailable: %s", doctor_id, exc)
                self.doctor_id, self.days, self.selected_day_index = doctor_id, [], None
                self._raw_days = []
                self.error = str(exc)
                self.loading = False
                return self.days

        if not self._is_current(generation, "schedule"):
            return self.days
        self.doctor_id = doctor_id
        self._raw_days = compute_availability(doctor_id, today, entries)
        self.days = list(self._raw_days)
        if not self.days:
            self.selected_day_index = None
            self.loading = False
            return self.days
        await self.select_day(pick_initial_day(self.days, today))
        return self.days

    async def select_day(self, index: int) -> DaySchedule | None:
        """Select a day and apply the doctor's and the patient's bookings to it."""
        if not 0 <= index < len(self.days):
            raise IndexError(f"Day index {index} out of range")
        generation = self._begin()
        self.selected_day_index = index
        self.timeline = None
        self.doctor_appointments = None
        day = self._raw_days[index]

        try:
            doctor_apts, patient_apts = await asyncio.gather(
                self._doctor_appointments(day.date),
                self.backend.fetch_appointments_for_patient(self.patient_id),
            )
        except DataUnavailableError as exc:
            if self._is_current(generation, "appointments"):
                logger.warning("Appointments for %s unavailable: %s", day.date, exc)
                self.error = str(exc)
                self.loading = False
            return None

        if not self._is_current(generation, "appointments"):
            return None
        self.doctor_appointments = doctor_apts
        self.patient_appointments = patient_apts
        self.days[index] = filter_day(day, doctor_apts, self.clock())
        self.loading = False
        return self.days[index]

    async def _doctor_appointments(self, day: date) -> list[Appointment]:
        if self.doctor_id is None:
            return []
        return await self.backend.fetch_appointments_for_doctor_on_date(self.doctor_id, day)

    def selectable_slots(self) -> list[TimeSlot]:
        """Slots the patient may pick right now; nothing while data is still loading."""
        day = self.selected_day
        if self.loading or day is None or self.doctor_appointments is None:
            return []
        duration = (
            self.consultation_service.min_duration
            if self.consultation_service and self.booking_type == BookingType.CONSULTATION_ONLY
            else None
        ) or DEFAULT_CONSULTATION_MINUTES
        now = self.clock()
        selectable = []
        for slot in day.slots:
            if not slot.available:
                continue
            end = to_minutes(slot.start_time) + duration
            if end >= 24 * 60:
                continue
            verdict = check_selection(day.date, slot.start_time, from_minutes(end), self.patient_appointments or (), now)
            if verdict.available:
                selectable.append(slot)
        return selectable

    async def select_booking_type(self, booking_type: BookingType) -> list[MedicalExamination]:
        """Load the specialty's services; a consultation-based booking needs the consultation resolved."""
        self.booking_type = booking_type
        self.timeline = None
        self.selected_services = []
        self.consultation_service = None
        self._services_generation += 1
        generation = self._services_generation
        if not self.specialty:
            self.services = []
            return self.services

        services = await self.backend.fetch_services_by_specialty(self.specialty)
        if generation != self._services_generation:
            logger.debug("Discarding stale services for %s", booking_type.value)
            return self.services
        self.services = services
        if booking_type != BookingType.PREVENTIVE_SERVICE:
            self.consultation_service = require_consultation_service(self.services, self.specialty)
        if booking_type == BookingType.CONSULTATION_ONLY:
            self.selected_services = [self.consultation_service]
        return self.services

    def select_services(self, service_ids: list[str]) -> list[MedicalExamination]:
        by_id = {s.id: s for s in self.services}
        selected = [by_id[sid] for sid in service_ids if sid in by_id]
        if self.consultation_service and self.booking_type == BookingType.SERVICE_AND_CONSULTATION:
            if all(s.id != self.consultation_service.id for s in selected):
                selected.append(self.consultation_service)
        self.selected_services = selected
        self.timeline = None
        return selected

    async def load_medical_requests(self) -> list[MedicalServicesRequest]:
        """Pending doctor-issued service lists the patient can reuse for this specialty."""
        try:
            return await self.backend.fetch_medical_requests(self.patient_id, self.specialty)
        except DataUnavailableError as exc:
            logger.warning("Medical requests for patient %s unavailable: %s", self.patient_id, exc)
            return []

    def apply_medical_request(self, request: MedicalServicesRequest) -> list[MedicalExamination]:
        return self.select_services([s.id for s in request.medical_examinations])

    # -- booking ------------------------------------------------------------

    def build_timeline(self, slot: TimeSlot) -> MultiStepTimeline:
        day = self.selected_day
        if day is None or self.booking_type is None:
            raise ValueError("Select a day and a booking type first")
        self.timeline = sequence_services(
            self.selected_services,
            slot,
            day.slots,
            booking_type=self.booking_type,
            work_date=day.date,
            patient_appointments=self.patient_appointments or (),
            now=self.clock(),
        )
        return self.timeline

    def price(self) -> PriceBreakdown:
        return price_booking(s.price for s in self.selected_services)

    async def submit(self, store: DraftStore) -> str:
        """Compose the draft from the current selection and start the deposit payment."""
        day = self.selected_day
        draft = compose_booking(
            self.booking_type,
            day.date if day else None,
            self.timeline,
            self.selected_services,
            doctor_id=self.doctor_id,
        )
        return await submit_booking(draft, store, self.backend.submit_booking_draft, key=draft_key(self.patient_id))
