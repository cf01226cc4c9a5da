# blueprints/conflicts/errors.py
from __future__ import annotations


class ConflictEngineError(Exception):
    """Базовая ошибка движка конфликтов; code: машинный код для вызывающей стороны."""
    code = "CONFLICT_ENGINE_ERROR"

    def __init__(self, message: str | None = None, **details):
        super().__init__(message or self.code)
        self.details = details


class InvalidResolution(ConflictEngineError, ValueError):
    code = "INVALID_RESOLUTION"


class UnknownResourceType(ConflictEngineError, ValueError):
    code = "UNKNOWN_RESOURCE_TYPE"


class NotFound(ConflictEngineError, LookupError):
    code = "NOT_FOUND"


class ForceApprovalRequired(ConflictEngineError):
    code = "FORCE_APPROVAL_REQUIRED"


class AcknowledgementRequired(ConflictEngineError):
    code = "ACKNOWLEDGEMENT_REQUIRED"


class BookingLocked(ConflictEngineError):
    code = "BOOKING_LOCKED"


class RefreshLocked(ConflictEngineError):
    code = "REFRESH_LOCKED"


class InvalidStatus(ConflictEngineError, ValueError):
    code = "INVALID_STATUS"
