"""Async client for the clinic backend: schedules, appointments, services, payment.
Assumes a static bearer token issued to the booking service.
"""
from __future__ import annotations
import logging
import time
from datetime import date
from typing import Any
import httpx
from .config import HTTP_TIMEOUT, OHMS_API_TOKEN, OHMS_BASE_URL, PAYMENT_CANCEL_URL, PAYMENT_RETURN_URL
from .errors import DataUnavailableError, PaymentInitiationError
from .models import (
    Appointment,
    BookingDraft,
    MedicalExamination,
    MedicalServicesRequest,
    WeeklyScheduleEntry,
)

logger = logging.getLogger(__name__)

_BASE_URL = OHMS_BASE_URL
_PAYMENT_PRODUCT_NAME = "Dat coc kham benh"


def _headers(token: str | None = None) -> dict[str, str]:
    headers = {"Accept": "application/json"}
    token = token or OHMS_API_TOKEN
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _results(payload: Any) -> Any:
    """Unwrap the backend's {code, results} envelope; bare payloads pass through."""
    if isinstance(payload, dict) and "results" in payload:
        return payload["results"]
    return payload


async def _request(method: str, path: str, token: str | None = None, **kwargs) -> Any:
    try:
        async with httpx.AsyncClient(http2=True, timeout=HTTP_TIMEOUT) as client:
            resp = await client.request(method, f"{_BASE_URL}{path}", headers=_headers(token), **kwargs)
            resp.raise_for_status()
            return resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("%s %s failed: %s", method, path, exc)
        raise DataUnavailableError(f"{method} {path} failed") from exc


async def fetch_weekly_schedule(doctor_id: str, token: str | None = None) -> list[WeeklyScheduleEntry]:
    """Return the doctor's working intervals; an empty list means 'use default hours'."""
    payload = await _request("GET", f"/schedule/{doctor_id}", token)
    return [WeeklyScheduleEntry.model_validate(item) for item in _results(payload) or []]


async def fetch_appointments_for_doctor_on_date(doctor_id: str, day: date | str, token: str | None = None) -> list[Appointment]:
    day_iso = day.isoformat() if isinstance(day, date) else day
    payload = await _request("GET", f"/appointments/doctor/{doctor_id}/date/{day_iso}", token)
    return [Appointment.model_validate(item) for item in _results(payload) or []]


async def fetch_appointments_for_patient(patient_id: str, token: str | None = None) -> list[Appointment]:
    """Every appointment the patient holds, with any doctor."""
    payload = await _request("GET", f"/appointments/patient/{patient_id}", token)
    return [Appointment.model_validate(item) for item in _results(payload) or []]


async def fetch_services_by_specialty(specialty: str, token: str | None = None) -> list[MedicalExamination]:
    # backend field name is misspelled
    payload = await _request("POST", "/medical-examination/by-specialty", token, json={"specility": specialty})
    services = [MedicalExamination.model_validate(item) for item in _results(payload) or []]
    if not services:
        raise DataUnavailableError(f"No services configured for specialty {specialty}")
    return services


async def fetch_medical_requests(patient_id: str, specialty: str | None = None, token: str | None = None) -> list[MedicalServicesRequest]:
    """Active doctor-issued service requests for the patient, optionally for one specialty."""
    payload = await _request("GET", f"/medical-requests/patient/{patient_id}", token)
    requests = [MedicalServicesRequest.model_validate(item) for item in _results(payload) or []]
    return [
        req for req in requests
        if req.status and (specialty is None or req.medical_specialty == specialty)
    ]


async def submit_booking_draft(draft: BookingDraft, token: str | None = None) -> str:
    """Open a deposit payment for the draft and return the checkout URL."""
    body = {
        "productName": _PAYMENT_PRODUCT_NAME,
        "description": f"DH{int(time.time()) % 10**10:010d}",
        "price": draft.deposit,
        "returnUrl": PAYMENT_RETURN_URL,
        "cancelUrl": PAYMENT_CANCEL_URL,
    }
    try:
        payload = await _request("POST", "/api/v1/payos/create", token, json=body)
    except DataUnavailableError as exc:
        raise PaymentInitiationError("Payment service unavailable") from exc

    results = _results(payload)
    url = results.get("checkoutUrl") if isinstance(results, dict) else None
    if not url:
        raise PaymentInitiationError("Payment service returned no checkout URL")
    return url
