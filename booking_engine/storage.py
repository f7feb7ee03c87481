"""Short-lived storage for booking drafts across a payment redirect."""
from __future__ import annotations
import logging
import time
import uuid
from typing import Callable
from .config import DRAFT_TTL_SECONDS
from .models import BookingDraft

logger = logging.getLogger(__name__)

PENDING_BOOKING_KEY = "pendingBooking"


def draft_key(owner: str | None = None) -> str:
    """Per-patient key, so one patient's attempt never touches another's draft."""
    return f"{PENDING_BOOKING_KEY}:{owner}" if owner else PENDING_BOOKING_KEY


class DraftStore:
    """In-memory key -> JSON blob map with per-entry expiry.

    A second booking attempt under the same key overwrites the first. Each
    put is tagged with an attempt id so a failed attempt can only remove
    its own draft.
    """

    def __init__(self, ttl_seconds: float = DRAFT_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, dict[str, float | str]] = {}

    def put(self, draft: BookingDraft, key: str = PENDING_BOOKING_KEY) -> str:
        if key in self._entries:
            logger.debug("Overwriting stored draft %s", key)
        attempt = uuid.uuid4().hex
        self._entries[key] = {
            "blob": draft.model_dump_json(by_alias=True),
            "exp": self._clock() + self.ttl_seconds,
            "attempt": attempt,
        }
        return attempt

    def get(self, key: str = PENDING_BOOKING_KEY) -> BookingDraft | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry["exp"]:
            del self._entries[key]
            return None
        return BookingDraft.model_validate_json(entry["blob"])  # type: ignore[arg-type]

    def pop(self, key: str = PENDING_BOOKING_KEY) -> BookingDraft | None:
        draft = self.get(key)
        self._entries.pop(key, None)
        return draft

    def discard(self, key: str, attempt: str) -> bool:
        """Drop the draft under ``key`` only if it is still the one ``attempt`` stored."""
        entry = self._entries.get(key)
        if entry is None or entry["attempt"] != attempt:
            return False
        del self._entries[key]
        return True

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
