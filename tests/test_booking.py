from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select

from conftest import make_flight
from flight_booking.availability import count_occupants
from flight_booking.booking import (
    cancel_booking,
    create_booking,
    get_booking,
    get_booking_by_reference,
    set_booking_status,
)
from flight_booking.models import (
    AncillarySale,
    Booking,
    BookingPassenger,
    BookingStatus,
    FlightStatus,
    Passenger,
)
from flight_booking.request import PassengerDetails
from flight_booking.results import ErrorCategory, FailureKind
from flight_booking.seats import assign_seat


def _count(session_factory, model) -> int:
    with session_factory() as session:
        return session.scalar(select(func.count()).select_from(model))


def test_create_booking_persists_the_whole_graph(world, session_factory):
    result = world.book(count=2, ancillaries=[(world.bag_id, 2)])

    assert result.ok
    booking = result.value
    assert re.fullmatch(r"[0-9A-F]{8}", booking.reference)
    assert booking.status is BookingStatus.PENDING
    assert booking.total_price == Decimal("810.00")
    assert booking.account_id == world.alice.account_id
    assert [link.passenger.last_name for link in booking.passengers] == ["Number0", "Number1"]
    assert all(link.flight_instance_id == world.flight_id for link in booking.passengers)
    assert all(link.seat_id is None for link in booking.passengers)
    [sale] = booking.ancillary_sales
    assert (sale.quantity, sale.unit_price, sale.price_paid) == (2, Decimal("45.00"), Decimal("90.00"))


def test_passenger_profiles_are_reused_by_passport(world, session_factory):
    traveller = PassengerDetails(first_name="Ada", last_name="Lovelace", passport_number="gb1815")
    request = world.request(1)
    request.passengers[0] = traveller

    first = create_booking(session_factory, request, world.alice, now=world.now)
    second = create_booking(session_factory, request, world.alice, now=world.now)

    assert first.ok and second.ok
    assert first.value.passengers[0].passenger_id == second.value.passengers[0].passenger_id
    assert first.value.passengers[0].passenger.passport_number == "GB1815"
    assert first.value.reference != second.value.reference
    assert _count(session_factory, Passenger) == 1


def test_inactive_ancillary_rolls_back_everything(world, session_factory):
    result = world.book(count=2, ancillaries=[(world.bag_id, 1), (world.retired_product_id, 1)])

    assert result.kind is FailureKind.ANCILLARY_PRODUCT_INVALID
    assert result.category is ErrorCategory.BUSINESS_RULE_VIOLATION
    for model in (Booking, Passenger, BookingPassenger, AncillarySale):
        assert _count(session_factory, model) == 0


def test_missing_ancillary_rolls_back_everything(world, session_factory):
    result = world.book(count=1, ancillaries=[(999, 1)])

    assert result.kind is FailureKind.ANCILLARY_PRODUCT_INVALID
    assert _count(session_factory, Booking) == 0
    assert _count(session_factory, Passenger) == 0


def test_malformed_requests_are_rejected_before_any_write(world, session_factory):
    empty = world.book(count=0)
    duplicate = world.request(2)
    duplicate.passengers[1] = PassengerDetails(
        first_name="Twin", last_name="Two", passport_number=duplicate.passengers[0].passport_number.lower()
    )
    bad_quantity = world.book(count=1, ancillaries=[(world.bag_id, 0)])

    assert empty.kind is FailureKind.INVALID_INPUT
    assert create_booking(session_factory, duplicate, world.alice, now=world.now).kind is FailureKind.INVALID_INPUT
    assert bad_quantity.kind is FailureKind.INVALID_INPUT
    assert _count(session_factory, Booking) == 0


def test_unknown_fare_is_a_pricing_failure(world, session_factory):
    result = world.book(count=1, fare_code="NOPE")

    assert result.kind is FailureKind.PRICING_FAILURE
    assert result.category is ErrorCategory.INVALID_INPUT
    assert result.cause.kind is FailureKind.NOT_FOUND


def test_only_scheduled_future_flights_are_bookable(world, session_factory):
    assert world.book(count=1, flight_id=999).kind is FailureKind.NOT_FOUND
    assert world.book(count=1, now=world.departure + timedelta(minutes=1)).kind is FailureKind.FLIGHT_NOT_BOOKABLE

    world.set_flight_status(FlightStatus.DEPARTED)
    result = world.book(count=1)

    assert result.kind is FailureKind.FLIGHT_NOT_BOOKABLE
    assert result.category is ErrorCategory.BUSINESS_RULE_VIOLATION


def test_request_larger_than_remaining_capacity(world, session_factory):
    assert world.book(count=8).ok

    result = world.book(count=3)

    assert result.kind is FailureKind.INSUFFICIENT_CAPACITY
    assert "2 remaining" in result.message


def test_two_concurrent_bookings_for_the_last_two_seats(world, session_factory):
    flight_id = make_flight(session_factory, departure=world.departure, max_seats=150)
    assert world.book(count=148, flight_id=flight_id).ok
    requests = [world.request(2, flight_id=flight_id), world.request(2, flight_id=flight_id)]
    callers = [world.alice, world.bob]

    def attempt(index: int):
        return create_booking(session_factory, requests[index], callers[index], now=world.now)

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(attempt, range(2)))

    assert sum(result.ok for result in results) == 1
    [loser] = [result for result in results if not result.ok]
    assert loser.kind is FailureKind.INSUFFICIENT_CAPACITY
    with session_factory() as session:
        assert count_occupants(session, flight_id) == 150


def test_concurrent_bookings_never_exceed_capacity(world, session_factory):
    requests = [world.request(2) for _ in range(6)]

    def attempt(request):
        return create_booking(session_factory, request, world.alice, now=world.now)

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(attempt, requests))

    assert sum(result.ok for result in results) == 5
    assert all(
        result.kind is FailureKind.INSUFFICIENT_CAPACITY for result in results if not result.ok
    )
    with session_factory() as session:
        assert count_occupants(session, world.flight_id) == 10


def test_confirmation_issues_tickets_once(world, session_factory):
    booking = world.book(count=1).value
    issued = []

    confirmed = set_booking_status(
        session_factory, booking.id, BookingStatus.CONFIRMED, now=world.now, ticket_issuer=issued.append
    )
    again = set_booking_status(
        session_factory, booking.id, BookingStatus.CONFIRMED, now=world.now, ticket_issuer=issued.append
    )

    assert confirmed.value.status is BookingStatus.CONFIRMED
    assert again.ok and again.value.status is BookingStatus.CONFIRMED
    assert [ticketed.id for ticketed in issued] == [booking.id]


def test_status_machine_rejects_invalid_moves(world, session_factory):
    booking = world.book(count=1).value
    assert set_booking_status(session_factory, booking.id, BookingStatus.CONFIRMED, now=world.now).ok

    back = set_booking_status(session_factory, booking.id, BookingStatus.PENDING, now=world.now)
    assert back.kind is FailureKind.INVALID_STATUS_TRANSITION

    assert set_booking_status(session_factory, booking.id, BookingStatus.CANCELLED, now=world.now).ok
    revive = set_booking_status(session_factory, booking.id, BookingStatus.CONFIRMED, now=world.now)
    assert revive.kind is FailureKind.INVALID_STATUS_TRANSITION
    repeat = set_booking_status(session_factory, booking.id, BookingStatus.CANCELLED, now=world.now)
    assert repeat.ok

    missing = set_booking_status(session_factory, 999, BookingStatus.CONFIRMED, now=world.now)
    assert missing.kind is FailureKind.NOT_FOUND


def test_cancellation_releases_seats(world, session_factory):
    booking = world.book(count=1).value
    passenger_id = booking.passengers[0].passenger_id
    assert assign_seat(
        session_factory, world.alice, booking.id, passenger_id, world.seats["3A"], now=world.now
    ).ok

    cancelled = cancel_booking(session_factory, booking.id, world.alice, now=world.now)

    assert cancelled.value.status is BookingStatus.CANCELLED
    assert cancelled.value.passengers[0].seat_id is None
    other = world.book(world.bob, count=1).value
    taken = assign_seat(
        session_factory, world.bob, other.id, other.passengers[0].passenger_id, world.seats["3A"], now=world.now
    )
    assert taken.ok


def test_cancellation_window(world, session_factory, monkeypatch):
    booking = world.book(count=1).value
    late = world.departure - timedelta(hours=1)

    closed = cancel_booking(session_factory, booking.id, world.alice, now=late)
    assert closed.kind is FailureKind.CANCELLATION_WINDOW_CLOSED

    monkeypatch.setenv("FLIGHT_BOOKING_CANCELLATION_WINDOW_HOURS", "0.5")
    assert cancel_booking(session_factory, booking.id, world.alice, now=late).ok


def test_only_owner_or_elevated_roles_may_act(world, session_factory):
    booking = world.book(count=1).value

    assert get_booking(session_factory, booking.id, world.bob).kind is FailureKind.UNAUTHORIZED
    assert cancel_booking(session_factory, booking.id, world.bob, now=world.now).kind is FailureKind.UNAUTHORIZED
    denied = set_booking_status(
        session_factory, booking.id, BookingStatus.CONFIRMED, caller=world.bob, now=world.now
    )
    assert denied.category is ErrorCategory.UNAUTHORIZED

    assert get_booking(session_factory, booking.id, world.alice).ok
    assert get_booking(session_factory, booking.id, world.admin).ok
    assert cancel_booking(session_factory, booking.id, world.admin, now=world.now).ok


def test_lookup_by_reference(world, session_factory):
    booking = world.book(count=1).value

    found = get_booking_by_reference(session_factory, booking.reference.lower(), world.alice)

    assert found.value.id == booking.id
    assert get_booking_by_reference(session_factory, "FFFFFFFF", world.alice).kind is FailureKind.NOT_FOUND
    assert get_booking(session_factory, 999, world.alice).kind is FailureKind.NOT_FOUND


def test_reference_collision_rolls_back_and_is_retryable(world, session_factory, monkeypatch):
    existing = world.book(count=1).value
    monkeypatch.setattr(
        "flight_booking.booking.generate_booking_reference", lambda: existing.reference
    )

    result = world.book(count=2)

    assert result.kind is FailureKind.PERSISTENCE_FAILURE
    assert result.category is ErrorCategory.PERSISTENCE_FAILURE
    assert result.retryable
    assert _count(session_factory, Booking) == 1
    assert _count(session_factory, Passenger) == 1
    assert _count(session_factory, BookingPassenger) == 1


def test_customers_cannot_confirm_their_own_booking(world, session_factory):
    booking = world.book(count=1).value
    issued = []

    denied = set_booking_status(
        session_factory,
        booking.id,
        BookingStatus.CONFIRMED,
        caller=world.alice,
        now=world.now,
        ticket_issuer=issued.append,
    )

    assert denied.kind is FailureKind.UNAUTHORIZED
    assert issued == []
    assert get_booking(session_factory, booking.id, world.alice).value.status is BookingStatus.PENDING

    confirmed = set_booking_status(
        session_factory, booking.id, BookingStatus.CONFIRMED, caller=world.admin, now=world.now
    )
    assert confirmed.value.status is BookingStatus.CONFIRMED
    cancelled = set_booking_status(
        session_factory, booking.id, BookingStatus.CANCELLED, caller=world.alice, now=world.now
    )
    assert cancelled.value.status is BookingStatus.CANCELLED


def test_ticket_issuer_errors_do_not_undo_confirmation(world, session_factory):
    booking = world.book(count=1).value

    def failing_issuer(confirmed):
        raise RuntimeError("ticketing offline")

    result = set_booking_status(
        session_factory, booking.id, BookingStatus.CONFIRMED, now=world.now, ticket_issuer=failing_issuer
    )

    assert result.ok
    assert result.value.status is BookingStatus.CONFIRMED
    assert get_booking(session_factory, booking.id, world.alice).value.status is BookingStatus.CONFIRMED


def test_capacity_lost_after_pre_check_is_retryable(world, session_factory, monkeypatch):
    assert world.book(count=9).ok
    monkeypatch.setattr("flight_booking.booking._pre_check", lambda session, request, now: None)

    result = world.book(count=2)

    assert result.kind is FailureKind.INSUFFICIENT_CAPACITY
    assert result.retryable
    assert "1 remaining" in result.message
    assert _count(session_factory, Booking) == 1
