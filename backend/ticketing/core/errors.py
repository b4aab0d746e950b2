"""
Domain error codes for the transaction core.

Services raise these; the HTTP layer maps ``code`` to a status code in one
exception handler so the client can tell a sold-out event from a duplicate
registration.
"""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Domain error codes."""

    NOT_FOUND = "NOT_FOUND"
    INSUFFICIENT_SEATS = "INSUFFICIENT_SEATS"
    ALREADY_REGISTERED = "ALREADY_REGISTERED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
    UPLOAD_FAILURE = "UPLOAD_FAILURE"
    INVALID_PROMOTION = "INVALID_PROMOTION"
    RESERVATION_CONFLICT = "RESERVATION_CONFLICT"
    FORBIDDEN = "FORBIDDEN"
    INVALID_REQUEST = "INVALID_REQUEST"


class DomainError(Exception):
    """Base domain error with code and user-safe message."""

    code: ErrorCode

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFoundError(DomainError):
    """Referenced event, user or transaction does not exist (or is not visible to the caller)."""

    def __init__(self, resource: str, resource_id: object) -> None:
        super().__init__(ErrorCode.NOT_FOUND, f"{resource} not found")
        self.resource = resource
        self.resource_id = resource_id


class InsufficientSeatsError(DomainError):
    def __init__(self, available: int, requested: int) -> None:
        super().__init__(
            ErrorCode.INSUFFICIENT_SEATS,
            f"Event is full. Only {available} seats remaining, but you requested {requested} seats.",
        )
        self.available = available
        self.requested = requested


class AlreadyRegisteredError(DomainError):
    def __init__(self, user_id: int, event_id: int) -> None:
        super().__init__(ErrorCode.ALREADY_REGISTERED, "You are already registered for this event.")
        self.user_id = user_id
        self.event_id = event_id


class InvalidTransitionError(DomainError):
    """Requested lifecycle edge does not exist from the transaction's current status."""

    def __init__(self, current: str, target: str, message: Optional[str] = None) -> None:
        super().__init__(
            ErrorCode.INVALID_TRANSITION,
            message or f"Cannot move transaction from {current} to {target}",
        )
        self.current = current
        self.target = target


class PaymentExpiredError(InvalidTransitionError):
    """Payment proof arrived after the payment deadline; the transaction was expired instead."""

    def __init__(self, transaction_id: int) -> None:
        super().__init__(
            "WAITING_PAYMENT",
            "WAITING_CONFIRMATION",
            "Payment deadline has passed. The registration has expired.",
        )
        self.code = ErrorCode.PAYMENT_EXPIRED
        self.transaction_id = transaction_id


class UploadFailureError(DomainError):
    def __init__(self, reason: str) -> None:
        super().__init__(ErrorCode.UPLOAD_FAILURE, "Failed to upload payment proof")
        self.reason = reason


class InvalidPromotionError(DomainError):
    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.INVALID_PROMOTION, message)


class ReservationConflictError(DomainError):
    def __init__(self) -> None:
        super().__init__(
            ErrorCode.RESERVATION_CONFLICT,
            "Registration failed due to high demand. Please try again.",
        )


class ForbiddenError(DomainError):
    def __init__(self, message: str = "You are not authorized to perform this action") -> None:
        super().__init__(ErrorCode.FORBIDDEN, message)


class InvalidRequestError(DomainError):
    """Arguments the service cannot act on (quantity below 1, unknown status filter)."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.INVALID_REQUEST, message)


# Internal ledger races. The reservation engine retries or normalizes these;
# they never reach the HTTP layer.

class SeatConflict(Exception):
    def __init__(self, event_id: int, requested: int) -> None:
        super().__init__(f"seat reservation lost race on event {event_id} ({requested} requested)")
        self.event_id = event_id
        self.requested = requested


class PointsConflict(Exception):
    def __init__(self, user_id: int, requested: int) -> None:
        super().__init__(f"points reservation lost race for user {user_id} ({requested} requested)")
        self.user_id = user_id
        self.requested = requested


class PromotionConflict(Exception):
    def __init__(self, promotion_id: int) -> None:
        super().__init__(f"promotion {promotion_id} reached its usage limit")
        self.promotion_id = promotion_id


class DuplicateRegistration(Exception):
    """Store-level uniqueness violation on (user_id, event_id) among active transactions."""

    def __init__(self, user_id: int, event_id: int) -> None:
        super().__init__(f"active transaction already exists for user {user_id} on event {event_id}")
        self.user_id = user_id
        self.event_id = event_id
