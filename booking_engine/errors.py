"""Booking engine exceptions."""
from __future__ import annotations


class BookingEngineError(Exception):
    """Base class for every error raised by the booking engine."""


class DataUnavailableError(BookingEngineError):
    """A required collaborator fetch failed or came back empty."""


class ConflictError(BookingEngineError):
    """A selected window collides with an existing booking or with the past.

    The conflict filter reports conflicts as slot verdicts; this is only raised
    when a caller insists on composing a booking from a rejected window.
    """

    def __init__(self, reason: str, message: str | None = None):
        self.reason = reason
        super().__init__(message or f"Selected time is not bookable ({reason})")


class ConfigurationError(BookingEngineError):
    """Upstream data is set up wrong, e.g. a specialty without a consultation service."""


class BookingValidationError(BookingEngineError):
    """A booking was composed without a field its booking type requires."""

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"{field} is required")


class PaymentInitiationError(BookingEngineError):
    """The payment collaborator failed or did not return a redirect URL."""
