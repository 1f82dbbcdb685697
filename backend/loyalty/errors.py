# Overview: Domain error hierarchy shared by services and routes.

"""
Every service-layer failure is one of these. Each carries the HTTP status
the route layer responds with, a human-readable message, and optional
structured details merged into the JSON body.

Raising any of them inside run_atomic() rolls the whole store transaction
back, so no state is mutated by a failed operation.
"""

from __future__ import annotations


class LoyaltyError(Exception):
    """Base class for locally-detected operation failures."""
    status_code = 500
    kind = "Error"

    def __init__(self, message: str | None = None, details: dict | None = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind}
        body.update(self.details)
        return body


class InvalidRequestError(LoyaltyError):
    """Malformed or out-of-range input, failed promotion validation, time-window violation."""
    status_code = 400
    kind = "InvalidRequest"


class InsufficientBalanceError(InvalidRequestError):
    """A debit (or budget draw) larger than what is available."""
    kind = "InsufficientBalance"


class UnauthorizedError(LoyaltyError):
    status_code = 401
    kind = "Unauthorized"


class ForbiddenError(LoyaltyError):
    """Role or ownership check failed."""
    status_code = 403
    kind = "Forbidden"


class NotFoundError(LoyaltyError):
    status_code = 404
    kind = "NotFound"


class ConflictError(LoyaltyError):
    """Duplicate unique field, already-processed redemption."""
    status_code = 409
    kind = "Conflict"


class GoneError(LoyaltyError):
    """Event ended or full; reset token expired."""
    status_code = 410
    kind = "Gone"


class TooManyRequestsError(LoyaltyError):
    status_code = 429
    kind = "TooManyRequests"
