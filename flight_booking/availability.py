"""Remaining-capacity checks for a flight."""
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .catalog import get_flight
from .models import Booking, BookingPassenger, BookingStatus
from .results import Failure, FailureKind, Result, Success


@dataclass(frozen=True)
class CapacityCheck:
    capacity: int
    occupied: int
    requested: int

    @property
    def remaining(self) -> int:
        return max(self.capacity - self.occupied, 0)

    @property
    def available(self) -> bool:
        return self.remaining >= self.requested


def count_occupants(session: Session, flight_id: int) -> int:
    """Passengers holding a place on ``flight_id`` through a non-cancelled booking."""

    return session.scalar(
        select(func.count())
        .select_from(BookingPassenger)
        .join(Booking, Booking.id == BookingPassenger.booking_id)
        .where(
            BookingPassenger.flight_instance_id == flight_id,
            Booking.status != BookingStatus.CANCELLED,
        )
    ) or 0


def check_capacity(session: Session, flight_id: int, requested_seats: int) -> Result[CapacityCheck]:
    """Compare remaining capacity against ``requested_seats``.

    The answer is only as fresh as the read. Booking creation repeats the
    comparison under the flight lock before it commits.
    """

    if requested_seats < 1:
        return Failure.of(FailureKind.INVALID_INPUT, "At least one seat must be requested.")
    flight = get_flight(session, flight_id)
    if flight is None:
        return Failure.of(FailureKind.NOT_FOUND, f"Flight {flight_id} not found.")
    return Success(
        CapacityCheck(
            capacity=flight.capacity,
            occupied=count_occupants(session, flight_id),
            requested=requested_seats,
        )
    )


__all__ = ["CapacityCheck", "check_capacity", "count_occupants"]
