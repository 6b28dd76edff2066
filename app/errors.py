"""
Payment error taxonomy.

Every expected business failure is a PaymentError carrying an ErrorKind and
the HTTP status the API layer renders it with. A guarded transition that
finds the payment already terminal is not an error; see TransitionResult in
app.services.payment_ledger.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    AUTHORIZATION = "authorization_error"
    NOT_FOUND = "not_found"
    GATEWAY = "gateway_error"


class ConfigurationError(RuntimeError):
    """Missing or invalid startup configuration. Fatal."""


class PaymentError(Exception):
    """Base class for expected payment failures."""

    kind: ErrorKind = ErrorKind.VALIDATION
    http_status: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PaymentError):
    kind = ErrorKind.VALIDATION
    http_status = 400


class AlreadySettledError(ValidationError):
    """Expense is not (or no longer) awaiting payment."""

    http_status = 409


class ForbiddenError(PaymentError):
    kind = ErrorKind.AUTHORIZATION
    http_status = 403


class NotFoundError(PaymentError):
    kind = ErrorKind.NOT_FOUND
    http_status = 404


class GatewayError(PaymentError):
    """Flow call failed: timeout, transport error, non-2xx or bad body."""

    kind = ErrorKind.GATEWAY
    http_status = 502

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        raw_body: Optional[str] = None,
        timeout: bool = False,
    ):
        super().__init__(message)
        self.status = status
        self.raw_body = raw_body
        self.timeout = timeout

    def __str__(self) -> str:
        status = self.status if self.status is not None else "N/A"
        return f"{self.message} (status={status}, timeout={self.timeout})"
