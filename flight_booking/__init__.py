"""Flight booking transaction and pricing engine."""
from typing import Any

from .availability import CapacityCheck, check_capacity
from .booking import (
    cancel_booking,
    create_booking,
    get_booking,
    get_booking_by_reference,
    set_booking_status,
)
from .cli import main as cli_main
from .database import UnitOfWork, create_session_factory, init_db, session_scope
from .dataset import generate_sample_data
from .identity import CallerContext, CallerIdentity, resolve_caller
from .pricing import FareQuote, compute_base_fare, compute_booking_total, compute_seat_price, quote_base_fare
from .request import AncillaryPurchase, BookingRequest, PassengerDetails
from .results import ErrorCategory, Failure, FailureKind, Result, Success
from .seats import SeatAssignment, SeatMap, assign_seat, get_seat_map, release_seat


def create_app(*args: Any, **kwargs: Any):  # pragma: no cover - thin wrapper
    from .web import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "AncillaryPurchase",
    "BookingRequest",
    "CallerContext",
    "CallerIdentity",
    "CapacityCheck",
    "ErrorCategory",
    "Failure",
    "FailureKind",
    "FareQuote",
    "PassengerDetails",
    "Result",
    "SeatAssignment",
    "SeatMap",
    "Success",
    "UnitOfWork",
    "assign_seat",
    "cancel_booking",
    "check_capacity",
    "cli_main",
    "compute_base_fare",
    "compute_booking_total",
    "compute_seat_price",
    "create_app",
    "create_booking",
    "create_session_factory",
    "generate_sample_data",
    "get_booking",
    "get_booking_by_reference",
    "get_seat_map",
    "init_db",
    "quote_base_fare",
    "release_seat",
    "resolve_caller",
    "session_scope",
    "set_booking_status",
]
