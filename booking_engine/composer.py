"""Assemble a typed booking draft and hand it to payment initiation."""
from __future__ import annotations
import logging
from datetime import date
from typing import Awaitable, Callable, Sequence
from .config import DEPOSIT_PCT, ONLINE_DISCOUNT_PCT
from .errors import BookingValidationError, ConflictError, PaymentInitiationError
from .models import (
    BookingDraft,
    BookingType,
    DepositStatus,
    MedicalExamination,
    MultiStepTimeline,
    ServiceSlotPayload,
)
from .pricing import price_booking
from .sequencer import require_consultation_service
from .storage import PENDING_BOOKING_KEY, DraftStore

logger = logging.getLogger(__name__)

PaymentInitiator = Callable[[BookingDraft], Awaitable[str]]


def validate_booking(
    booking_type: BookingType | None,
    work_date: date | None,
    timeline: MultiStepTimeline | None,
    services: Sequence[MedicalExamination],
    doctor_id: str | None = None,
) -> None:
    """Raise BookingValidationError naming the first missing field."""
    if booking_type is None:
        raise BookingValidationError("bookingType")
    if work_date is None:
        raise BookingValidationError("workDate")
    if booking_type != BookingType.PREVENTIVE_SERVICE and not doctor_id:
        raise BookingValidationError("doctorId")
    if not services:
        raise BookingValidationError("medicalExaminationIds")
    if timeline is None:
        raise BookingValidationError("startTime")
    if timeline.booking_type != booking_type:
        raise BookingValidationError("bookingType", "Timeline was built for a different booking type")
    if booking_type == BookingType.SERVICE_AND_CONSULTATION:
        if not timeline.service_slots:
            raise BookingValidationError("serviceSlots")
        if timeline.consultation_slot is None:
            raise BookingValidationError("consultationSlot")
    if not timeline.is_valid:
        raise ConflictError(timeline.reason.value if timeline.reason else "NO_SLOT")


def compose_booking(
    booking_type: BookingType,
    work_date: date,
    timeline: MultiStepTimeline,
    services: Sequence[MedicalExamination],
    doctor_id: str | None = None,
    discount_pct: int = ONLINE_DISCOUNT_PCT,
    deposit_pct: int = DEPOSIT_PCT,
) -> BookingDraft:
    validate_booking(booking_type, work_date, timeline, services, doctor_id)
    price = price_booking((s.price for s in services), discount_pct, deposit_pct)
    common = dict(
        booking_type=booking_type,
        work_date=work_date,
        discount=discount_pct,
        deposit=price.deposit,
        deposit_status=DepositStatus.PENDING,
    )

    if booking_type == BookingType.SERVICE_AND_CONSULTATION:
        consultation = require_consultation_service(services)
        return BookingDraft(
            **common,
            doctor_id=doctor_id,
            service_slots=[
                ServiceSlotPayload(service_id=s.service_id, start_time=s.start_time, end_time=s.end_time)
                for s in timeline.service_slots
            ],
            consultation_slot=timeline.consultation_slot,
            # the parent appointment carries only the consultation; diagnostics ride on serviceSlots
            medical_examination_ids=[consultation.id],
        )

    return BookingDraft(
        **common,
        doctor_id=doctor_id if booking_type == BookingType.CONSULTATION_ONLY else None,
        start_time=timeline.start_time,
        end_time=timeline.end_time,
        medical_examination_ids=[s.id for s in services],
        total_amount=price.total if booking_type == BookingType.PREVENTIVE_SERVICE else None,
    )


async def submit_booking(
    draft: BookingDraft,
    store: DraftStore,
    initiate_payment: PaymentInitiator,
    key: str = PENDING_BOOKING_KEY,
) -> str:
    """Persist the draft for redirect-resume, then return the payment redirect URL.

    The draft is dropped again if payment initiation fails, so a failed
    attempt leaves nothing behind. A newer attempt stored under the same key
    in the meantime is left alone.
    """
    attempt = store.put(draft, key)
    try:
        url = await initiate_payment(draft)
    except PaymentInitiationError:
        store.discard(key, attempt)
        raise
    if not url:
        store.discard(key, attempt)
        raise PaymentInitiationError("Payment service returned no redirect URL")
    logger.info("Booking %s on %s submitted for deposit %s", draft.booking_type.value, draft.work_date, draft.deposit)
    return url
