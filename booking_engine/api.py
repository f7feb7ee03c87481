import logging
from datetime import date, datetime
from typing import Optional
from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import Field
from .availability import compute_availability, pick_initial_day
from .composer import compose_booking, submit_booking
from .config import BOOKING_API_KEY, DEPOSIT_PCT, ONLINE_DISCOUNT_PCT, offline_mode
from .conflicts import filter_day
from .errors import (
    BookingEngineError,
    BookingValidationError,
    ConfigurationError,
    ConflictError,
    DataUnavailableError,
    PaymentInitiationError,
)
from .models import (
    Appointment,
    BookingDraft,
    BookingType,
    DaySchedule,
    MedicalExamination,
    MultiStepTimeline,
    PriceBreakdown,
    TimeSlot,
    WeeklyScheduleEntry,
    WireModel,
)
from .pricing import format_price, price_booking
from .sequencer import sequence_services
from .storage import DraftStore, draft_key
from . import client

logger = logging.getLogger(__name__)


class AvailabilityRequest(WireModel):
    doctor_id: Optional[str] = None
    today: Optional[date] = None
    # when omitted, the doctor's schedule is fetched from the backend
    entries: Optional[list[WeeklyScheduleEntry]] = None
    doctor_appointments: list[Appointment] = Field(default_factory=list)
    now: Optional[datetime] = None


class AvailabilityResponse(WireModel):
    days: list[DaySchedule]
    initial_day_index: int


class SequenceRequest(WireModel):
    booking_type: BookingType = BookingType.SERVICE_AND_CONSULTATION
    services: list[MedicalExamination]
    start_slot: TimeSlot
    day_grid: list[TimeSlot] = Field(default_factory=list)
    work_date: Optional[date] = None
    patient_appointments: list[Appointment] = Field(default_factory=list)
    now: Optional[datetime] = None


class PriceRequest(WireModel):
    prices: list[int]
    discount_pct: int = ONLINE_DISCOUNT_PCT
    deposit_pct: int = DEPOSIT_PCT


class PriceResponse(PriceBreakdown):
    display_total: str
    display_discounted: str
    display_deposit: str


class BookingRequest(WireModel):
    # drafts are kept per patient; anonymous requests share one key
    patient_id: Optional[str] = None
    booking_type: Optional[BookingType] = None
    doctor_id: Optional[str] = None
    work_date: Optional[date] = None
    services: list[MedicalExamination] = Field(default_factory=list)
    timeline: Optional[MultiStepTimeline] = None


class BookingResponse(WireModel):
    checkout_url: str
    draft: BookingDraft


# Exception -> HTTP status, most specific first
_STATUS_BY_ERROR = (
    (DataUnavailableError, 503),
    (ConflictError, 409),
    (ConfigurationError, 500),
    (BookingValidationError, 422),
    (PaymentInitiationError, 502),
)

# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)

app = FastAPI(title="Booking Engine Service")

# drafts awaiting the payment redirect
drafts = DraftStore()


def verify_key(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Validate Bearer token provided via Authorization header"""
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != BOOKING_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


async def booking_error_handler(request: Request, exc: BookingEngineError):
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    body = {"detail": str(exc), "error": type(exc).__name__}
    if isinstance(exc, ConflictError):
        body["reason"] = exc.reason
    if isinstance(exc, BookingValidationError):
        body["field"] = exc.field
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content=body)


app.add_exception_handler(BookingEngineError, booking_error_handler)


async def _offline_checkout(draft: BookingDraft) -> str:
    return f"https://pay.example.invalid/offline-demo?amount={draft.deposit}"


@app.post("/availability", dependencies=[Depends(verify_key)], response_model=AvailabilityResponse, response_model_by_alias=True)
async def availability(req: AvailabilityRequest):
    """Two-week slot grid with the doctor's bookings and past times marked unavailable."""
    today = req.today or date.today()
    entries = req.entries
    if entries is None and req.doctor_id is not None:
        entries = await client.fetch_weekly_schedule(req.doctor_id)
    days = compute_availability(req.doctor_id, today, entries or [])
    now = req.now or datetime.now()
    days = [filter_day(day, req.doctor_appointments, now) for day in days]
    return AvailabilityResponse(days=days, initial_day_index=pick_initial_day(days, today))


@app.post("/sequence", dependencies=[Depends(verify_key)], response_model=MultiStepTimeline, response_model_by_alias=True)
async def sequence(req: SequenceRequest):
    """Order the selected services into a timeline starting at the chosen slot."""
    return sequence_services(
        req.services,
        req.start_slot,
        req.day_grid,
        booking_type=req.booking_type,
        work_date=req.work_date,
        patient_appointments=req.patient_appointments,
        now=req.now,
    )


@app.post("/price", dependencies=[Depends(verify_key)], response_model=PriceResponse, response_model_by_alias=True)
async def price(req: PriceRequest):
    breakdown = price_booking(req.prices, req.discount_pct, req.deposit_pct)
    return PriceResponse(
        **breakdown.model_dump(),
        display_total=format_price(breakdown.total),
        display_discounted=format_price(breakdown.discounted),
        display_deposit=format_price(breakdown.deposit),
    )


@app.post("/bookings", dependencies=[Depends(verify_key)], response_model=BookingResponse, response_model_by_alias=True)
async def create_booking(req: BookingRequest):
    """Compose the booking draft and open the deposit payment. In OFFLINE_MODE return a demo checkout URL."""
    draft = compose_booking(
        req.booking_type,
        req.work_date,
        req.timeline,
        req.services,
        doctor_id=req.doctor_id,
    )
    initiate = _offline_checkout if offline_mode() else client.submit_booking_draft
    url = await submit_booking(draft, drafts, initiate, key=draft_key(req.patient_id))
    return BookingResponse(checkout_url=url, draft=draft)


@app.get("/bookings/pending/{patient_id}", dependencies=[Depends(verify_key)], response_model=BookingDraft, response_model_by_alias=True)
async def pending_booking(patient_id: str):
    """The draft a patient left behind before the payment redirect, if it has not expired."""
    draft = drafts.get(draft_key(patient_id))
    if draft is None:
        raise HTTPException(status_code=404, detail="No pending booking")
    return draft
