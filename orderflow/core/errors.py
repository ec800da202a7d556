"""Typed failures raised by the order lifecycle and delivery tracking core."""

from __future__ import annotations


class OrderflowError(Exception):
    """Business-rule failure with a stable kind and a human-readable reason."""

    kind: str = "OrderflowError"
    status_code: int = 400

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def as_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "detail": self.reason}


class ValidationError(OrderflowError):
    """Malformed input; the client must fix the request before resubmitting."""

    kind = "ValidationError"
    status_code = 422


class InvalidTransition(OrderflowError):
    """Current order status does not allow the requested transition."""

    kind = "InvalidTransition"
    status_code = 409


class PartnerUnavailable(OrderflowError):
    """Delivery partner is not active or already bound to another order."""

    kind = "PartnerUnavailable"
    status_code = 409


class OtpMismatch(OrderflowError):
    """Hand-off code did not match, or the attempt limit has been reached."""

    kind = "OtpMismatch"
    status_code = 400


class NotAuthorized(OrderflowError):
    """Role or ownership check failed for the acting identity."""

    kind = "NotAuthorized"
    status_code = 403


class NotFound(OrderflowError):
    kind = "NotFound"
    status_code = 404


class DependencyUnavailable(OrderflowError):
    """Persistence or another collaborator could not be reached; retryable."""

    kind = "DependencyUnavailable"
    status_code = 503
