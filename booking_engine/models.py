from __future__ import annotations
from datetime import date, time
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class AppointmentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# spellings seen from the backend
_STATUS_ALIASES = {
    "SCHEDULE": AppointmentStatus.SCHEDULED,
    "CONFIRMED": AppointmentStatus.SCHEDULED,
    "INPROGRESS": AppointmentStatus.IN_PROGRESS,
    "CANCELED": AppointmentStatus.CANCELLED,
    "CANCEL": AppointmentStatus.CANCELLED,
}


class ServiceType(str, Enum):
    WAIT = "WAIT"  # patient may leave while results are pending
    STAY = "STAY"  # patient stays on site for the whole service


class ServiceRole(str, Enum):
    CONSULTATION = "CONSULTATION"
    DIAGNOSTIC = "DIAGNOSTIC"


class BookingType(str, Enum):
    CONSULTATION_ONLY = "CONSULTATION_ONLY"
    SERVICE_AND_CONSULTATION = "SERVICE_AND_CONSULTATION"
    PREVENTIVE_SERVICE = "PREVENTIVE_SERVICE"


class DepositStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    DEPOSIT = "DEPOSIT"


class ConflictReason(str, Enum):
    DOCTOR_BOOKED = "DOCTOR_BOOKED"
    PATIENT_CONFLICT = "PATIENT_CONFLICT"
    PAST_TIME = "PAST_TIME"


# ---------------------------------------------------------------------------
# Inputs read from the backend
# ---------------------------------------------------------------------------

class WeeklyScheduleEntry(WireModel):
    """One continuous working interval for a doctor on one date."""
    work_date: date
    start_time: time
    end_time: time


class MedicalExamination(WireModel):
    id: str
    name: str
    price: int = 0
    min_duration: int | None = None  # minutes
    type: ServiceType | None = None
    role: ServiceRole | None = None

    @model_validator(mode="before")
    @classmethod
    def _catalogue_type(cls, data):
        # the catalogue's free-form type column also holds ONLINE, EXAMINATION, ...;
        # only WAIT/STAY affect sequencing, and CONSULTATION doubles as the role tag
        if isinstance(data, dict):
            raw = data.get("type")
            if isinstance(raw, str):
                key = raw.strip().upper()
                data = dict(data)
                if key == ServiceRole.CONSULTATION.value and not data.get("role"):
                    data["role"] = ServiceRole.CONSULTATION
                data["type"] = key if key in ServiceType.__members__ else None
        return data


class ServiceAppointment(WireModel):
    id: str
    start_time: time | None = None
    end_time: time | None = None
    status: str | None = None


class Appointment(WireModel):
    id: str
    patient_id: str | None = None
    doctor_id: str | None = None
    work_date: date
    start_time: time
    end_time: time
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    parent_appointment_id: str | None = None
    service_appointments: list[ServiceAppointment] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value):
        if isinstance(value, str):
            key = value.strip().upper().replace(" ", "_")
            if key in AppointmentStatus.__members__:
                return AppointmentStatus[key]
            if key in _STATUS_ALIASES:
                return _STATUS_ALIASES[key]
        return value

    @property
    def is_parent(self) -> bool:
        return self.parent_appointment_id is None

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentStatus.CANCELLED


class MedicalServicesRequest(WireModel):
    """A doctor-issued list of services the patient can book in one go."""
    id: str
    medical_examinations: list[MedicalExamination] = Field(default_factory=list)
    medical_specialty: str | None = None
    status: bool = False


# ---------------------------------------------------------------------------
# Derived, recomputed per input change
# ---------------------------------------------------------------------------

class TimeSlot(WireModel):
    start_time: time
    end_time: time
    available: bool = True
    reason: ConflictReason | None = None


class DaySchedule(WireModel):
    date: date
    label: str
    week_label: str
    slots: list[TimeSlot] = Field(default_factory=list)
    has_api_schedule: bool = False

    @property
    def has_available_slot(self) -> bool:
        return any(slot.available for slot in self.slots)


class SlotVerdict(WireModel):
    available: bool
    reason: ConflictReason | None = None


class ServiceSlot(WireModel):
    service_id: str
    service_name: str | None = None
    start_time: time
    end_time: time
    duration: int


class ConsultationSlot(WireModel):
    start_time: time
    end_time: time


class MultiStepTimeline(WireModel):
    booking_type: BookingType
    service_slots: list[ServiceSlot] = Field(default_factory=list)
    consultation_slot: ConsultationSlot | None = None
    start_time: time
    end_time: time
    total_duration: int  # minutes from first start to last end
    is_valid: bool = True
    reason: ConflictReason | None = None


class PriceBreakdown(WireModel):
    total: int
    discounted: int
    deposit: int


# ---------------------------------------------------------------------------
# Outgoing booking payloads
# ---------------------------------------------------------------------------

class ServiceSlotPayload(WireModel):
    service_id: str
    start_time: time
    end_time: time


class BookingDraft(WireModel):
    """Transient booking request kept only long enough to survive a payment redirect."""
    booking_type: BookingType
    doctor_id: str | None = None
    work_date: date
    start_time: time | None = None
    end_time: time | None = None
    service_slots: list[ServiceSlotPayload] | None = None
    consultation_slot: ConsultationSlot | None = None
    medical_examination_ids: list[str] = Field(default_factory=list)
    total_amount: int | None = None
    discount: int
    deposit: int
    deposit_status: DepositStatus = DepositStatus.PENDING

    def to_wire(self) -> dict:
        # each booking type has its own payload shape; unused fields stay off the wire
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if self.booking_type == BookingType.PREVENTIVE_SERVICE:
            data["doctorId"] = None
        return data

