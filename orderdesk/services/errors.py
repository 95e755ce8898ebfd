"""
Domain error taxonomy shared by all services.

Services raise these; the API layer maps `status_code` to HTTP and batch
operations record `code` per item instead of aborting.
"""
from __future__ import annotations

from decimal import Decimal


class OrderDeskError(Exception):
    code = "error"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class ValidationError(OrderDeskError):
    code = "validation_error"
    status_code = 400


class NotFound(OrderDeskError):
    code = "not_found"
    status_code = 404


class StateConflict(OrderDeskError):
    code = "state_conflict"
    status_code = 409


class InvalidState(StateConflict):
    code = "invalid_state"


class AlreadyResolved(StateConflict):
    code = "already_resolved"


class InsufficientCredit(OrderDeskError):
    code = "insufficient_credit"
    status_code = 402

    def __init__(self, required: Decimal, available: Decimal) -> None:
        super().__init__(f"insufficient credit: required {required}, available {available}")
        self.required = required
        self.available = available


class ArtifactFormatError(OrderDeskError):
    code = "artifact_format_error"
    status_code = 422


class ConcurrencyConflict(OrderDeskError):
    """Lost update detected on a ledger write. Safe to retry."""

    code = "concurrency_conflict"
    status_code = 409
    retryable = True


class DownstreamError(OrderDeskError):
    code = "downstream_error"
    status_code = 503
