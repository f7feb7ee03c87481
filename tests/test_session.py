import asyncio
from datetime import date, datetime, time
import pytest
from booking_engine.errors import ConfigurationError, DataUnavailableError
from booking_engine.models import (
    Appointment,
    BookingType,
    ConflictReason,
    MedicalExamination,
    MedicalServicesRequest,
    ServiceRole,
    ServiceType,
    WeeklyScheduleEntry,
)
from booking_engine.session import BookingSession
from booking_engine.storage import DraftStore, draft_key

TODAY = date(2025, 6, 2)
NOW = datetime(2025, 6, 2, 7, 0)

CONSULT = MedicalExamination(id="K", name="Khám tim mạch", price=200000, min_duration=10, role=ServiceRole.CONSULTATION)
ECG = MedicalExamination(id="ECG", name="ECG", price=150000, min_duration=15, type=ServiceType.STAY)
BLOOD = MedicalExamination(id="BLD", name="Blood panel", price=150000, min_duration=45, type=ServiceType.WAIT)


class FakeBackend:
    """Stands in for booking_engine.client; gates let a test hold a fetch open."""

    def __init__(self):
        self.schedules = {
            "doc-1": [WeeklyScheduleEntry(work_date=TODAY, start_time=time(8), end_time=time(10))],
            "doc-2": [WeeklyScheduleEntry(work_date=TODAY, start_time=time(14), end_time=time(15))],
        }
        self.doctor_appointments = {}
        self.patient_appointments = []
        self.services = [CONSULT, ECG, BLOOD]
        self.requests = []
        self.gates = {}
        self.submitted = []
        self.fail_schedule = False

    async def fetch_weekly_schedule(self, doctor_id):
        if doctor_id in self.gates:
            await self.gates[doctor_id].wait()
        if self.fail_schedule:
            raise DataUnavailableError("schedule down")
        return self.schedules.get(doctor_id, [])

    async def fetch_appointments_for_doctor_on_date(self, doctor_id, day):
        return self.doctor_appointments.get((doctor_id, day), [])

    async def fetch_appointments_for_patient(self, patient_id):
        if "patient" in self.gates:
            await self.gates["patient"].wait()
        return self.patient_appointments

    async def fetch_services_by_specialty(self, specialty):
        services = self.services
        # the gate holds only the call that finds it
        gate = self.gates.pop("services", None)
        if gate is not None:
            await gate.wait()
        return services

    async def fetch_medical_requests(self, patient_id, specialty=None):
        return [r for r in self.requests if r.status and r.medical_specialty == specialty]

    async def submit_booking_draft(self, draft):
        self.submitted.append(draft)
        return "https://pay.example/checkout/42"


def _apt(start, end, doctor_id="doc-1", status="SCHEDULED"):
    return Appointment(
        id=f"apt-{start}", patient_id="pat-9", doctor_id=doctor_id, work_date=TODAY,
        start_time=start, end_time=end, status=status,
    )


def _session(backend, specialty="CARDIOLOGY"):
    return BookingSession("pat-1", specialty, backend=backend, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_select_doctor_builds_filtered_grid():
    backend = FakeBackend()
    backend.doctor_appointments[("doc-1", TODAY)] = [_apt(time(8), time(8, 10)), _apt(time(9), time(9, 10), status="CANCELLED")]
    session = _session(backend)

    days = await session.select_doctor("doc-1", today=TODAY)
    assert len(days) == 12
    assert session.selected_day_index == 0
    assert not session.loading
    slots = session.selected_day.slots
    assert slots[0].reason == ConflictReason.DOCTOR_BOOKED
    assert all(s.available for s in slots[1:])
    assert [s.start_time for s in session.selectable_slots()][0] == time(8, 10)


@pytest.mark.asyncio
async def test_stale_schedule_response_is_discarded():
    backend = FakeBackend()
    backend.gates["doc-1"] = asyncio.Event()
    session = _session(backend)

    slow = asyncio.create_task(session.select_doctor("doc-1", today=TODAY))
    await asyncio.sleep(0)
    await session.select_doctor("doc-2", today=TODAY)
    backend.gates["doc-1"].set()
    await slow

    assert session.doctor_id == "doc-2"
    assert session.selected_day.slots[0].start_time == time(14)


@pytest.mark.asyncio
async def test_no_selectable_slots_while_loading():
    backend = FakeBackend()
    session = _session(backend)
    await session.select_doctor("doc-1", today=TODAY)

    backend.gates["patient"] = asyncio.Event()
    pending = asyncio.create_task(session.select_day(0))
    await asyncio.sleep(0)
    assert session.loading
    assert session.selectable_slots() == []

    backend.gates["patient"].set()
    await pending
    assert not session.loading
    assert session.selectable_slots()


@pytest.mark.asyncio
async def test_patient_conflicts_hide_slots():
    backend = FakeBackend()
    backend.patient_appointments = [_apt(time(8, 30), time(9), doctor_id="doc-7")]
    session = _session(backend)
    await session.select_doctor("doc-1", today=TODAY)

    starts = [s.start_time for s in session.selectable_slots()]
    assert time(8, 20) in starts
    assert time(8, 30) not in starts
    assert time(8, 50) not in starts
    assert time(9) in starts


@pytest.mark.asyncio
async def test_schedule_failure_gives_empty_state():
    backend = FakeBackend()
    backend.fail_schedule = True
    session = _session(backend)

    assert await session.select_doctor("doc-1", today=TODAY) == []
    assert session.error == "schedule down"
    assert not session.loading
    assert session.selectable_slots() == []


@pytest.mark.asyncio
async def test_preventive_session_uses_default_hours():
    session = _session(FakeBackend())
    days = await session.select_doctor(None, today=TODAY)
    assert days[0].slots[0].start_time == time(7)


@pytest.mark.asyncio
async def test_booking_type_without_consultation_is_rejected():
    backend = FakeBackend()
    backend.services = [ECG, BLOOD]
    session = _session(backend)

    with pytest.raises(ConfigurationError):
        await session.select_booking_type(BookingType.SERVICE_AND_CONSULTATION)


@pytest.mark.asyncio
async def test_consultation_is_added_to_service_selection():
    session = _session(FakeBackend())
    await session.select_booking_type(BookingType.SERVICE_AND_CONSULTATION)
    selected = session.select_services(["ECG", "unknown"])
    assert [s.id for s in selected] == ["ECG", "K"]


@pytest.mark.asyncio
async def test_medical_request_prefills_services():
    backend = FakeBackend()
    backend.requests = [
        MedicalServicesRequest(id="req-1", medical_specialty="CARDIOLOGY", status=True, medical_examinations=[BLOOD]),
        MedicalServicesRequest(id="req-2", medical_specialty="CARDIOLOGY", status=False, medical_examinations=[ECG]),
    ]
    session = _session(backend)
    await session.select_booking_type(BookingType.SERVICE_AND_CONSULTATION)

    requests = await session.load_medical_requests()
    assert [r.id for r in requests] == ["req-1"]
    assert [s.id for s in session.apply_medical_request(requests[0])] == ["BLD", "K"]


@pytest.mark.asyncio
async def test_full_booking_flow():
    backend = FakeBackend()
    session = _session(backend)
    store = DraftStore()

    await session.select_doctor("doc-1", today=TODAY)
    await session.select_booking_type(BookingType.SERVICE_AND_CONSULTATION)
    session.select_services(["ECG", "BLD"])
    timeline = session.build_timeline(session.selectable_slots()[0])
    assert timeline.is_valid
    assert session.price().deposit == 225000

    url = await session.submit(store)
    assert url == "https://pay.example/checkout/42"
    draft = store.get(draft_key("pat-1"))
    assert draft == backend.submitted[0]
    assert draft.medical_examination_ids == ["K"]
    assert draft.doctor_id == "doc-1"


@pytest.mark.asyncio
async def test_reselecting_day_drops_cancelled_booking():
    backend = FakeBackend()
    backend.doctor_appointments[("doc-1", TODAY)] = [_apt(time(8), time(8, 10))]
    session = _session(backend)
    await session.select_doctor("doc-1", today=TODAY)
    assert session.selected_day.slots[0].reason == ConflictReason.DOCTOR_BOOKED

    backend.doctor_appointments[("doc-1", TODAY)] = [_apt(time(8), time(8, 10), status="CANCELLED")]
    day = await session.select_day(0)

    assert day.slots[0].available
    assert day.slots[0].reason is None
    assert session.selectable_slots()[0].start_time == time(8)


@pytest.mark.asyncio
async def test_stale_services_response_is_discarded():
    backend = FakeBackend()
    backend.services = [CONSULT]
    gate = backend.gates["services"] = asyncio.Event()
    session = _session(backend)

    slow = asyncio.create_task(session.select_booking_type(BookingType.CONSULTATION_ONLY))
    await asyncio.sleep(0)
    backend.services = [CONSULT, ECG, BLOOD]
    await session.select_booking_type(BookingType.SERVICE_AND_CONSULTATION)
    gate.set()
    await slow

    assert session.booking_type == BookingType.SERVICE_AND_CONSULTATION
    assert [s.id for s in session.services] == ["K", "ECG", "BLD"]
    assert session.selected_services == []
