"""Runtime settings, read from the environment (and a local .env) at import time."""
from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()

OHMS_BASE_URL = os.getenv("OHMS_BASE_URL", "http://localhost:8080")
OHMS_API_TOKEN = os.getenv("OHMS_API_TOKEN", "")
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "15"))

# Bearer key the booking API expects from its own callers
BOOKING_API_KEY = os.getenv("BOOKING_API_KEY", "")

ONLINE_DISCOUNT_PCT = int(os.getenv("ONLINE_DISCOUNT_PCT", "10"))
DEPOSIT_PCT = int(os.getenv("DEPOSIT_PCT", "50"))

DRAFT_TTL_SECONDS = int(os.getenv("DRAFT_TTL_SECONDS", "1800"))

PAYMENT_RETURN_URL = os.getenv("PAYMENT_RETURN_URL", "http://localhost:5173/payment-callback")
PAYMENT_CANCEL_URL = os.getenv("PAYMENT_CANCEL_URL", "http://localhost:5173/payment-cancel")


def offline_mode() -> bool:
    """OFFLINE_MODE=1 short-circuits payment initiation with demo data."""
    return os.getenv("OFFLINE_MODE", "0") == "1"
