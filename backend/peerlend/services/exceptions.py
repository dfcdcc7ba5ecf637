"""Domain errors raised by the lending services.

Every error carries a stable ``code`` so callers can branch on it without
parsing messages, and an ``http_status`` used by the API exception handler.
"""

from typing import Any


class LendingError(Exception):
    """Base exception for loan lifecycle and scoring errors."""

    code = "LENDING_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "details": self.details}


class ValidationError(LendingError):
    """Malformed or out-of-range input. Never retried automatically."""

    code = "VALIDATION_ERROR"
    http_status = 400


class InvalidStateError(LendingError):
    """Transition not permitted from the loan's current status.

    Also raised when a concurrent request won the race; re-read the loan
    before deciding to retry.
    """

    code = "INVALID_STATE"
    http_status = 409

    def __init__(self, message: str, *, loan_id: int | None = None, status: str | None = None):
        details: dict[str, Any] = {}
        if loan_id is not None:
            details["loan_id"] = loan_id
        if status is not None:
            details["status"] = status
        super().__init__(message, details)


class InsufficientFundsError(LendingError):
    code = "INSUFFICIENT_FUNDS"
    http_status = 400

    def __init__(self, required, available):
        super().__init__(
            f"Insufficient lending balance: required {required}, available {available}",
            {"required": str(required), "available": str(available)},
        )


class NotFoundError(LendingError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id: int | None = None):
        message = f"{entity} not found"
        if entity_id is not None:
            message = f"{entity} {entity_id} not found"
        super().__init__(message, {"entity": entity, "id": entity_id})


class ForbiddenError(LendingError):
    """Actor is not a party to the entity or lacks the required role."""

    code = "FORBIDDEN"
    http_status = 403


class AlreadyRatedError(LendingError):
    code = "ALREADY_RATED"
    http_status = 409
