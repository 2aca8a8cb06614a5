"""Errors raised by services and integrations.

Each class fixes the HTTP status and the machine-readable ``error`` code the
API answers with (see ``api.errors``); routers do not translate
them.
"""

from __future__ import annotations

from typing import Any


class CRMDialerError(Exception):
    """Base class. ``details`` ends up in the response body."""

    status_code: int = 500
    error_code: str = "CRM_DIALER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            body["details"] = self.details
        if self.cause:
            body["cause"] = str(self.cause)
        return body

    def __str__(self) -> str:
        if self.cause:
            return f"{self.error_code}: {self.message} (caused by {type(self.cause).__name__}: {self.cause})"
        return f"{self.error_code}: {self.message}"


# Records


class RecordNotFoundError(CRMDialerError):
    status_code = 404
    error_code = "RECORD_NOT_FOUND"


# Upstream services (502)


class IntegrationError(CRMDialerError):
    status_code = 502
    error_code = "INTEGRATION_ERROR"


class VapiError(IntegrationError):
    """Vapi rejected a request, is unreachable or is not configured."""

    error_code = "VAPI_ERROR"


class CalendarIntegrationError(IntegrationError):
    error_code = "CALENDAR_INTEGRATION_ERROR"


class TranscriptionError(IntegrationError):
    error_code = "TRANSCRIPTION_ERROR"


# Rules of the dialer (4xx)


class BusinessError(CRMDialerError):
    status_code = 400
    error_code = "BUSINESS_ERROR"


class ValidationError(BusinessError):
    error_code = "VALIDATION_ERROR"


class DoNotCallError(BusinessError):
    """The contact is marked Do Not Call or its number is blocked."""

    status_code = 409
    error_code = "DO_NOT_CALL"


class CallingWindowError(BusinessError):
    """Outside the permitted local calling hours.

    ``details`` carries ``window_start``, ``window_end`` and ``timezone``.
    """

    status_code = 409
    error_code = "OUTSIDE_CALLING_WINDOW"


class BatchError(BusinessError):
    """Batch session action not allowed in the current state."""

    status_code = 409
    error_code = "BATCH_ERROR"


# Access


class InvalidSignatureError(CRMDialerError):
    """Webhook signature or shared secret did not match."""

    status_code = 403
    error_code = "INVALID_SIGNATURE"


class ForbiddenError(CRMDialerError):
    """Record owned by another user."""

    status_code = 403
    error_code = "FORBIDDEN"
