"""Atomic booking creation and the booking status state machine."""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from .availability import check_capacity, count_occupants
from .catalog import FlightInfo, get_ancillary_product, get_flight
from .config import load_settings
from .database import UnitOfWork, is_unique_violation, store_failure
from .identity import CallerContext, authorize
from .models import (
    AncillarySale,
    Booking,
    BookingPassenger,
    BookingStatus,
    FlightInstance,
    FlightStatus,
    Passenger,
    utcnow,
)
from .pricing import compute_booking_total, round_price
from .request import AncillaryPurchase, BookingRequest, PassengerDetails
from .results import Failure, FailureKind, Result, Success

TicketIssuer = Callable[[Booking], None]

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
}


def generate_booking_reference() -> str:
    """Eight uppercase hex characters, e.g. ``7362A0F1``."""

    return uuid.uuid4().hex[:8].upper()


def _not_bookable(flight: FlightInfo, now: datetime) -> Optional[Failure]:
    if flight.is_mutable(now):
        return None
    if flight.status is not FlightStatus.SCHEDULED:
        return Failure.of(
            FailureKind.FLIGHT_NOT_BOOKABLE,
            f"Cannot book this flight. Current status: {flight.status.value}.",
        )
    return Failure.of(
        FailureKind.FLIGHT_NOT_BOOKABLE, "Cannot book a flight that has already departed."
    )


def _pre_check(session: Session, request: BookingRequest, now: datetime) -> Optional[Failure]:
    flight = get_flight(session, request.flight_id)
    if flight is None:
        return Failure.of(FailureKind.NOT_FOUND, "Flight instance not found.")
    failure = _not_bookable(flight, now)
    if failure is not None:
        return failure
    capacity = check_capacity(session, request.flight_id, request.passenger_count)
    if not capacity.ok:
        return capacity
    if not capacity.value.available:
        return Failure.of(
            FailureKind.INSUFFICIENT_CAPACITY,
            f"Insufficient seats. Only {capacity.value.remaining} remaining.",
        )
    return None


def _passenger_for(session: Session, account_id: int, details: PassengerDetails) -> Passenger:
    passport = details.passport_number.strip().upper()
    passenger = session.scalars(
        select(Passenger).where(
            Passenger.account_id == account_id,
            Passenger.passport_number == passport,
        )
    ).first()
    if passenger is None:
        passenger = Passenger(account_id=account_id, passport_number=passport)
        session.add(passenger)
    passenger.first_name = details.first_name.strip()
    passenger.last_name = details.last_name.strip()
    if details.date_of_birth is not None:
        passenger.date_of_birth = details.date_of_birth
    return passenger


def _ancillary_sales(
    session: Session, purchases: List[AncillaryPurchase]
) -> Tuple[List[AncillarySale], Optional[Failure]]:
    sales: List[AncillarySale] = []
    for purchase in purchases:
        product = get_ancillary_product(session, purchase.product_id)
        if product is None or not product.active:
            return [], Failure.of(
                FailureKind.ANCILLARY_PRODUCT_INVALID,
                f"Ancillary Product with ID {purchase.product_id} does not exist "
                "or is no longer available.",
            )
        sales.append(
            AncillarySale(
                product_id=product.id,
                quantity=purchase.quantity,
                unit_price=product.unit_price,
                price_paid=round_price(product.unit_price * purchase.quantity),
            )
        )
    return sales, None


def _write_booking(
    uow: UnitOfWork,
    request: BookingRequest,
    caller: CallerContext,
    total: Decimal,
    now: datetime,
) -> Result[int]:
    session = uow.session

    # Capacity is only trustworthy once the flight row is locked.
    flight = get_flight(session, request.flight_id, for_update=True)
    if flight is None:
        return Failure.of(FailureKind.NOT_FOUND, "Flight instance not found.")
    failure = _not_bookable(flight, now)
    if failure is not None:
        return failure
    remaining = flight.capacity - count_occupants(session, flight.id)
    if remaining < request.passenger_count:
        return Failure.of(
            FailureKind.INSUFFICIENT_CAPACITY,
            f"Insufficient seats. Only {max(remaining, 0)} remaining.",
            retryable=True,
        )

    booking = Booking(
        reference=generate_booking_reference(),
        account_id=caller.account_id,
        flight_instance_id=flight.id,
        fare_code=request.fare_code.strip().upper(),
        total_price=total,
        status=BookingStatus.PENDING,
        created_at=now,
    )
    session.add(booking)

    for details in request.passengers:
        passenger = _passenger_for(session, caller.account_id, details)
        booking.passengers.append(
            BookingPassenger(passenger=passenger, flight_instance_id=flight.id)
        )

    sales, failure = _ancillary_sales(session, request.ancillaries)
    if failure is not None:
        return failure
    booking.ancillary_sales.extend(sales)

    flushed = uow.flush(translate=_reference_collision)
    if not flushed.ok:
        return flushed
    return Success(booking.id)


def _reference_collision(exc: SQLAlchemyError) -> Optional[Failure]:
    if is_unique_violation(exc, "uq_booking_reference") or is_unique_violation(
        exc, "uq_account_passport"
    ):
        logger.warning("Concurrent insert collided on a unique key: {}", exc)
        return Failure.of(
            FailureKind.PERSISTENCE_FAILURE, "Booking collided with a concurrent write; retry."
        )
    return None


def create_booking(
    session_factory: sessionmaker[Session],
    request: BookingRequest,
    caller: CallerContext,
    *,
    now: Optional[datetime] = None,
) -> Result[Booking]:
    """Create a booking with its passengers and ancillaries, or nothing at all.

    Validation, capacity and pricing run first, outside any write lock. The
    write phase then locks the flight, re-checks capacity, inserts the whole
    graph and commits. Any failure inside it rolls back every row written.
    The returned booking is reloaded from the store after the commit.
    """

    now = now or utcnow()
    log = logger.bind(flight_id=request.flight_id, account_id=caller.account_id)

    failure = request.validate()
    if failure is None:
        with session_factory() as session:
            failure = _pre_check(session, request, now)
    if failure is not None:
        log.warning("Booking rejected before write: {}", failure.message)
        return failure

    total = compute_booking_total(session_factory, request, now=now)
    if not total.ok:
        log.warning("Booking pricing failed: {}", total.message)
        return Failure.of(FailureKind.PRICING_FAILURE, total.message, cause=total)

    with UnitOfWork(session_factory) as uow:
        try:
            written = _write_booking(uow, request, caller, total.value, now)
        except SQLAlchemyError as exc:
            written = store_failure(exc)
        if not written.ok:
            uow.rollback()
            log.warning("Booking rolled back: {}", written.message)
            return written
        committed = uow.commit()
        if not committed.ok:
            log.warning("Booking commit failed: {}", committed.message)
            return committed

    booking = get_booking(session_factory, written.value, caller)
    if booking.ok:
        log.bind(reference=booking.value.reference).info(
            "Booking created for {} passenger(s), total {}", request.passenger_count, total.value
        )
    return booking


def _load_booking(session: Session, *criteria) -> Optional[Booking]:
    return session.scalars(
        select(Booking)
        .options(
            selectinload(Booking.passengers).selectinload(BookingPassenger.passenger),
            selectinload(Booking.passengers).selectinload(BookingPassenger.seat),
            selectinload(Booking.ancillary_sales),
            selectinload(Booking.flight),
        )
        .where(*criteria)
    ).first()


def get_booking(
    session_factory: sessionmaker[Session], booking_id: int, caller: CallerContext
) -> Result[Booking]:
    with session_factory() as session:
        booking = _load_booking(session, Booking.id == booking_id)
    if booking is None:
        return Failure.of(FailureKind.NOT_FOUND, "Booking not found.")
    denied = authorize(caller, booking.account_id)
    return denied or Success(booking)


def get_booking_by_reference(
    session_factory: sessionmaker[Session], reference: str, caller: CallerContext
) -> Result[Booking]:
    with session_factory() as session:
        booking = _load_booking(session, Booking.reference == reference.strip().upper())
    if booking is None:
        return Failure.of(FailureKind.NOT_FOUND, "Booking not found.")
    denied = authorize(caller, booking.account_id)
    return denied or Success(booking)


def _transition(
    session: Session,
    booking: Booking,
    new_status: BookingStatus,
    now: datetime,
    window: timedelta,
) -> Optional[Failure]:
    if new_status not in ALLOWED_TRANSITIONS[booking.status]:
        return Failure.of(
            FailureKind.INVALID_STATUS_TRANSITION,
            f"Cannot move booking from {booking.status.value} to {new_status.value}.",
        )
    if new_status is BookingStatus.CANCELLED:
        departure = session.scalar(
            select(FlightInstance.scheduled_departure).where(
                FlightInstance.id == booking.flight_instance_id
            )
        )
        if departure is not None and departure < now + window:
            return Failure.of(
                FailureKind.CANCELLATION_WINDOW_CLOSED,
                "Cannot cancel booking too close to the flight departure time.",
            )
        session.execute(
            update(BookingPassenger)
            .where(BookingPassenger.booking_id == booking.id)
            .values(seat_id=None)
        )
    booking.status = new_status
    return None


def set_booking_status(
    session_factory: sessionmaker[Session],
    booking_id: int,
    new_status: BookingStatus,
    *,
    caller: Optional[CallerContext] = None,
    now: Optional[datetime] = None,
    ticket_issuer: Optional[TicketIssuer] = None,
) -> Result[Booking]:
    """Apply a payment or cancellation outcome to a booking.

    ``caller`` is omitted by trusted system flows such as payment webhooks.
    Re-applying the current status is a no-op. Cancelling releases the
    booking's seats in the same transaction. ``ticket_issuer`` is invoked with
    the reloaded booking after a confirmation commits.
    """

    now = now or utcnow()
    window = timedelta(hours=load_settings().cancellation_window_hours)
    log = logger.bind(booking_id=booking_id, new_status=new_status.value)

    with UnitOfWork(session_factory) as uow:
        try:
            booking = uow.session.scalars(
                select(Booking).where(Booking.id == booking_id).with_for_update()
            ).first()
            if booking is None:
                return Failure.of(FailureKind.NOT_FOUND, "Booking not found.")
            if caller is not None:
                denied = authorize(caller, booking.account_id)
                if denied is not None:
                    return denied
                # Confirmation records payment; customers cannot self-confirm.
                if new_status is BookingStatus.CONFIRMED and not caller.is_elevated:
                    log.warning("Confirmation refused for non-elevated caller {}", caller.subject)
                    return Failure.of(
                        FailureKind.UNAUTHORIZED, "Only staff or payment flows may confirm a booking."
                    )
            if booking.status is new_status:
                log.info("Booking already in requested status")
                changed = False
            else:
                failure = _transition(uow.session, booking, new_status, now, window)
                if failure is not None:
                    log.warning("Status change refused: {}", failure.message)
                    return failure
                changed = True
        except SQLAlchemyError as exc:
            return store_failure(exc)
        committed = uow.commit()
        if not committed.ok:
            return committed

    with session_factory() as session:
        reloaded = _load_booking(session, Booking.id == booking_id)
    if reloaded is None:
        return Failure.of(FailureKind.NOT_FOUND, "Booking not found.")
    if changed:
        log.info("Booking status changed")
        if new_status is BookingStatus.CONFIRMED and ticket_issuer is not None:
            try:
                ticket_issuer(reloaded)
            except Exception:
                # The confirmation is already committed.
                log.exception("Ticket issuance failed for booking {}", reloaded.reference)
    return Success(reloaded)


def cancel_booking(
    session_factory: sessionmaker[Session],
    booking_id: int,
    caller: CallerContext,
    *,
    now: Optional[datetime] = None,
) -> Result[Booking]:
    """Customer-initiated cancellation; only the owner or an elevated role may cancel."""

    return set_booking_status(
        session_factory, booking_id, BookingStatus.CANCELLED, caller=caller, now=now
    )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "TicketIssuer",
    "cancel_booking",
    "create_booking",
    "generate_booking_reference",
    "get_booking",
    "get_booking_by_reference",
    "set_booking_status",
]
