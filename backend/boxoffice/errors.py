# Overview: Error taxonomy shared by every service; routes branch on ErrorKind.

"""
Ticketing error kinds.

Every expected failure in the box office is a TicketingError carrying an
ErrorKind. Callers (routes, CLI, the admin UI) branch on .kind, never on the
message text. Only infrastructure failures (database unavailable) escape as
other exception types.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    # Input
    VALIDATION_FAILED = "ValidationFailed"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"

    # Inventory
    OUT_OF_STOCK = "OutOfStock"
    EXCEEDS_PER_ORDER_LIMIT = "ExceedsPerOrderLimit"

    # Order state machine
    INVALID_TRANSITION = "InvalidTransition"
    ORDER_EXPIRED = "OrderExpired"
    ALREADY_USED = "AlreadyUsed"

    # Check-in
    INVALID_TOKEN = "InvalidToken"
    ORDER_NOT_CONFIRMED = "OrderNotConfirmed"
    NOT_AUTHORIZED_FOR_EVENT = "NotAuthorizedForEvent"

    # Authentication / authorization
    INVALID_CREDENTIALS = "InvalidCredentials"
    ACCOUNT_DEACTIVATED = "AccountDeactivated"
    ACCOUNT_LOCKED = "AccountLocked"
    SESSION_EXPIRED = "SessionExpired"
    INSUFFICIENT_ROLE = "InsufficientRole"

    # Provisioning
    INVITE_EXPIRED = "InviteExpired"
    INVITE_ALREADY_USED = "InviteAlreadyUsed"
    INVITE_NOT_FOUND = "InviteNotFound"


# HTTP status used by the JSON routes for each kind
HTTP_STATUS = {
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.OUT_OF_STOCK: 409,
    ErrorKind.EXCEEDS_PER_ORDER_LIMIT: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.ORDER_EXPIRED: 409,
    ErrorKind.ALREADY_USED: 409,
    ErrorKind.INVALID_TOKEN: 400,
    ErrorKind.ORDER_NOT_CONFIRMED: 409,
    ErrorKind.NOT_AUTHORIZED_FOR_EVENT: 403,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.ACCOUNT_DEACTIVATED: 403,
    ErrorKind.ACCOUNT_LOCKED: 429,
    ErrorKind.SESSION_EXPIRED: 401,
    ErrorKind.INSUFFICIENT_ROLE: 403,
    ErrorKind.INVITE_EXPIRED: 410,
    ErrorKind.INVITE_ALREADY_USED: 409,
    ErrorKind.INVITE_NOT_FOUND: 404,
}


class TicketingError(Exception):
    """Raised for every expected, recoverable box office failure."""

    def __init__(self, kind: ErrorKind, message: str, details: dict | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details or {}

    @property
    def http_status(self) -> int:
        return HTTP_STATUS.get(self.kind, 400)

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind.value,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"<TicketingError {self.kind.value}: {self.message}>"
