"""Explicit result values returned by every engine operation."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

T = TypeVar("T")


class ErrorCategory(str, enum.Enum):
    INVALID_INPUT = "InvalidInput"
    NOT_FOUND = "NotFound"
    BUSINESS_RULE_VIOLATION = "BusinessRuleViolation"
    PERSISTENCE_FAILURE = "PersistenceFailure"
    UNAUTHENTICATED = "Unauthenticated"
    UNAUTHORIZED = "Unauthorized"


class FailureKind(str, enum.Enum):
    INVALID_INPUT = "invalid_input"
    PRICING_FAILURE = "pricing_failure"
    NOT_FOUND = "not_found"
    FLIGHT_NOT_BOOKABLE = "flight_not_bookable"
    FLIGHT_NOT_MUTABLE = "flight_not_mutable"
    INSUFFICIENT_CAPACITY = "insufficient_capacity"
    SEAT_CONFLICT = "seat_conflict"
    SEAT_NOT_ON_AIRCRAFT = "seat_not_on_aircraft"
    BOOKING_CANCELLED = "booking_cancelled"
    CANCELLATION_WINDOW_CLOSED = "cancellation_window_closed"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"
    ANCILLARY_PRODUCT_INVALID = "ancillary_product_invalid"
    PERSISTENCE_FAILURE = "persistence_failure"
    UNAUTHENTICATED = "unauthenticated"
    UNAUTHORIZED = "unauthorized"

    @property
    def category(self) -> ErrorCategory:
        return _CATEGORIES[self]


_CATEGORIES = {
    FailureKind.INVALID_INPUT: ErrorCategory.INVALID_INPUT,
    FailureKind.PRICING_FAILURE: ErrorCategory.INVALID_INPUT,
    FailureKind.NOT_FOUND: ErrorCategory.NOT_FOUND,
    FailureKind.FLIGHT_NOT_BOOKABLE: ErrorCategory.BUSINESS_RULE_VIOLATION,
    FailureKind.FLIGHT_NOT_MUTABLE: ErrorCategory.BUSINESS_RULE_VIOLATION,
    FailureKind.INSUFFICIENT_CAPACITY: ErrorCategory.BUSINESS_RULE_VIOLATION,
    FailureKind.SEAT_CONFLICT: ErrorCategory.BUSINESS_RULE_VIOLATION,
    FailureKind.SEAT_NOT_ON_AIRCRAFT: ErrorCategory.BUSINESS_RULE_VIOLATION,
    FailureKind.BOOKING_CANCELLED: ErrorCategory.BUSINESS_RULE_VIOLATION,
    FailureKind.CANCELLATION_WINDOW_CLOSED: ErrorCategory.BUSINESS_RULE_VIOLATION,
    FailureKind.INVALID_STATUS_TRANSITION: ErrorCategory.BUSINESS_RULE_VIOLATION,
    FailureKind.ANCILLARY_PRODUCT_INVALID: ErrorCategory.BUSINESS_RULE_VIOLATION,
    FailureKind.PERSISTENCE_FAILURE: ErrorCategory.PERSISTENCE_FAILURE,
    FailureKind.UNAUTHENTICATED: ErrorCategory.UNAUTHENTICATED,
    FailureKind.UNAUTHORIZED: ErrorCategory.UNAUTHORIZED,
}


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T

    ok = True


@dataclass(frozen=True)
class Failure:
    """A failed operation. Nothing it touched was left committed."""

    kind: FailureKind
    message: str
    retryable: bool = False
    cause: Optional["Failure"] = None

    ok = False

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category

    @classmethod
    def of(cls, kind: FailureKind, message: str, **kwargs) -> "Failure":
        retryable = kwargs.pop("retryable", kind is FailureKind.PERSISTENCE_FAILURE)
        return cls(kind=kind, message=message, retryable=retryable, **kwargs)


Result = Union[Success[T], Failure]


__all__ = [
    "ErrorCategory",
    "Failure",
    "FailureKind",
    "Result",
    "Success",
]
