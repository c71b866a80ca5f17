"""Seat assignment for booked passengers and the per-flight seat map."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple, Union

from loguru import logger
from sqlalchemy import and_, not_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .availability import count_occupants
from .catalog import FlightInfo, get_flight, get_seat, list_aircraft_seats
from .database import UnitOfWork, is_unique_violation, store_failure
from .identity import CallerContext, authorize
from .models import Booking, BookingPassenger, BookingStatus, CabinClass, FlightStatus, utcnow
from .pricing import days_until, price_seat
from .results import Failure, FailureKind, Result, Success


@dataclass(frozen=True)
class SeatAssignment:
    booking_id: int
    passenger_id: int
    flight_id: int
    seat_id: Optional[int]
    seat_number: Optional[str]
    changed: bool


@dataclass(frozen=True)
class SeatMapEntry:
    seat_id: int
    seat_number: str
    cabin_class: CabinClass
    is_window: bool
    is_exit_row: bool
    available: bool
    price: Optional[Decimal]


@dataclass
class SeatMap:
    flight_id: int
    cabins: Dict[CabinClass, List[SeatMapEntry]] = field(default_factory=dict)

    @property
    def seats(self) -> List[SeatMapEntry]:
        return [entry for entries in self.cabins.values() for entry in entries]

    @property
    def available_count(self) -> int:
        return sum(1 for entry in self.seats if entry.available)


def _seat_conflict(exc: SQLAlchemyError) -> Optional[Failure]:
    if is_unique_violation(exc, "uq_flight_seat"):
        return Failure.of(
            FailureKind.SEAT_CONFLICT, "Seat was taken by a concurrent request. Choose another seat."
        )
    return None


def _not_mutable(flight: Optional[FlightInfo], now: datetime) -> Optional[Failure]:
    if flight is None:
        return Failure.of(FailureKind.NOT_FOUND, "Flight instance not found.")
    if flight.is_mutable(now):
        return None
    if flight.status is not FlightStatus.SCHEDULED:
        return Failure.of(
            FailureKind.FLIGHT_NOT_MUTABLE,
            f"Cannot change seats for a flight that is {flight.status.value}.",
        )
    return Failure.of(
        FailureKind.FLIGHT_NOT_MUTABLE, "Cannot change seats for a flight that has departed."
    )


def _locate(
    session: Session, caller: CallerContext, booking_id: int, passenger_id: int
) -> Union[Tuple[Booking, BookingPassenger], Failure]:
    booking = session.get(Booking, booking_id)
    if booking is None:
        return Failure.of(FailureKind.NOT_FOUND, "Booking not found.")
    denied = authorize(caller, booking.account_id)
    if denied is not None:
        return denied
    if booking.status is BookingStatus.CANCELLED:
        return Failure.of(FailureKind.BOOKING_CANCELLED, "Cannot change seats on a cancelled booking.")
    link = session.get(BookingPassenger, (booking_id, passenger_id))
    if link is None:
        return Failure.of(FailureKind.NOT_FOUND, "Passenger is not part of this booking.")
    return booking, link


def _claim(
    session: Session,
    caller: CallerContext,
    booking_id: int,
    passenger_id: int,
    seat_id: int,
    now: datetime,
) -> Result[SeatAssignment]:
    located = _locate(session, caller, booking_id, passenger_id)
    if isinstance(located, Failure):
        return located
    booking, link = located

    flight = get_flight(session, booking.flight_instance_id, for_update=True)
    failure = _not_mutable(flight, now)
    if failure is not None:
        return failure
    seat = get_seat(session, seat_id)
    if seat is None:
        return Failure.of(FailureKind.NOT_FOUND, f"Seat {seat_id} not found.")
    if seat.aircraft_id != flight.aircraft_id:
        return Failure.of(
            FailureKind.SEAT_NOT_ON_AIRCRAFT,
            f"Seat {seat.seat_number} does not belong to this flight's aircraft.",
        )

    assignment = SeatAssignment(
        booking_id=booking_id,
        passenger_id=passenger_id,
        flight_id=flight.id,
        seat_id=seat.id,
        seat_number=seat.seat_number,
        changed=link.seat_id != seat.id,
    )
    if not assignment.changed:
        return Success(assignment)

    holder = session.scalars(
        select(BookingPassenger).where(
            BookingPassenger.flight_instance_id == flight.id,
            BookingPassenger.seat_id == seat.id,
            not_(
                and_(
                    BookingPassenger.booking_id == booking_id,
                    BookingPassenger.passenger_id == passenger_id,
                )
            ),
        )
    ).first()
    if holder is not None:
        return Failure.of(
            FailureKind.SEAT_CONFLICT,
            f"Seat {seat.seat_number} is already assigned to another passenger.",
        )
    link.seat_id = seat.id
    return Success(assignment)


def _unclaim(
    session: Session,
    caller: CallerContext,
    booking_id: int,
    passenger_id: int,
    now: datetime,
) -> Result[SeatAssignment]:
    located = _locate(session, caller, booking_id, passenger_id)
    if isinstance(located, Failure):
        return located
    booking, link = located

    assignment = SeatAssignment(
        booking_id=booking_id,
        passenger_id=passenger_id,
        flight_id=booking.flight_instance_id,
        seat_id=None,
        seat_number=None,
        changed=link.seat_id is not None,
    )
    if not assignment.changed:
        return Success(assignment)
    failure = _not_mutable(get_flight(session, booking.flight_instance_id, for_update=True), now)
    if failure is not None:
        return failure
    link.seat_id = None
    return Success(assignment)


def _run(
    session_factory: sessionmaker[Session],
    action: str,
    step,
    *args,
) -> Result[SeatAssignment]:
    with UnitOfWork(session_factory) as uow:
        try:
            outcome = step(uow.session, *args)
        except SQLAlchemyError as exc:
            outcome = store_failure(exc)
        if not outcome.ok:
            uow.rollback()
            logger.bind(action=action).warning("Seat {} refused: {}", action, outcome.message)
            return outcome
        if not outcome.value.changed:
            return outcome
        committed = uow.commit(translate=_seat_conflict)
        if not committed.ok:
            logger.bind(action=action).warning("Seat {} lost at commit: {}", action, committed.message)
            return committed
    value = outcome.value
    logger.bind(
        booking_id=value.booking_id, passenger_id=value.passenger_id, seat_id=value.seat_id
    ).info("Seat {} committed", action)
    return outcome


def assign_seat(
    session_factory: sessionmaker[Session],
    caller: CallerContext,
    booking_id: int,
    passenger_id: int,
    seat_id: int,
    *,
    now: Optional[datetime] = None,
) -> Result[SeatAssignment]:
    """Give ``passenger_id`` on ``booking_id`` the seat ``seat_id``.

    At most one passenger holds a seat on a flight. When two callers race for
    the same seat exactly one wins and the other gets ``SEAT_CONFLICT``.
    Assigning the seat the passenger already holds succeeds without a write.
    """

    return _run(
        session_factory, "assignment", _claim, caller, booking_id, passenger_id, seat_id, now or utcnow()
    )


def release_seat(
    session_factory: sessionmaker[Session],
    caller: CallerContext,
    booking_id: int,
    passenger_id: int,
    *,
    now: Optional[datetime] = None,
) -> Result[SeatAssignment]:
    """Drop the passenger's seat. Releasing an unassigned passenger is a no-op."""

    return _run(session_factory, "release", _unclaim, caller, booking_id, passenger_id, now or utcnow())


def _taken_seat_ids(session: Session, flight_id: int) -> Set[int]:
    return set(
        session.scalars(
            select(BookingPassenger.seat_id).where(
                BookingPassenger.flight_instance_id == flight_id,
                BookingPassenger.seat_id.is_not(None),
            )
        )
    )


def get_seat_map(
    session_factory: sessionmaker[Session],
    flight_id: int,
    *,
    now: Optional[datetime] = None,
) -> Result[SeatMap]:
    """Every seat on the flight's aircraft, grouped by cabin, with availability and price."""

    now = now or utcnow()
    with session_factory() as session:
        flight = get_flight(session, flight_id)
        if flight is None:
            return Failure.of(FailureKind.NOT_FOUND, "Flight instance not found.")
        if flight.aircraft_id is None:
            return Success(SeatMap(flight_id=flight_id))
        seats = list_aircraft_seats(session, flight.aircraft_id)
        taken = _taken_seat_ids(session, flight_id)
        occupied = count_occupants(session, flight_id)

    days = days_until(flight.departure, now)
    seat_map = SeatMap(flight_id=flight_id)
    for cabin in CabinClass:
        entries = [
            SeatMapEntry(
                seat_id=seat.id,
                seat_number=seat.seat_number,
                cabin_class=seat.cabin_class,
                is_window=seat.is_window,
                is_exit_row=seat.is_exit_row,
                available=seat.id not in taken,
                price=price_seat(
                    seat, days_to_departure=days, occupied=occupied, capacity=flight.capacity
                ),
            )
            for seat in seats
            if seat.cabin_class is cabin
        ]
        if entries:
            seat_map.cabins[cabin] = entries
    return Success(seat_map)


__all__ = [
    "SeatAssignment",
    "SeatMap",
    "SeatMapEntry",
    "assign_seat",
    "get_seat_map",
    "release_seat",
]
