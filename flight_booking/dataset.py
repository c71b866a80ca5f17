"""Utilities to populate the database with sample data for tests and demos."""
from __future__ import annotations

import random
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from .booking import create_booking
from .catalog import (
    add_account,
    add_aircraft,
    add_ancillary_product,
    add_fare_code,
    add_flight,
    add_pricing_rule,
    add_route,
)
from .identity import CallerContext
from .models import CabinClass, utcnow
from .request import AncillaryPurchase, BookingRequest, PassengerDetails
from .seats import assign_seat, get_seat_map

AIRPORTS: Sequence[str] = (
    "ATL",
    "PEK",
    "DXB",
    "LAX",
    "HND",
    "ORD",
    "LHR",
    "HKG",
    "PVG",
    "CDG",
)
# model, max seats, (cabin, first row, last row) ranges, exit rows
AIRCRAFT: Sequence[Tuple[str, int, Sequence[Tuple[CabinClass, int, int]], Sequence[int]]] = (
    (
        "A320",
        60,
        ((CabinClass.BUSINESS, 1, 2), (CabinClass.PREMIUM_ECONOMY, 3, 4), (CabinClass.ECONOMY, 5, 10)),
        (8,),
    ),
    (
        "B787",
        120,
        (
            (CabinClass.FIRST, 1, 1),
            (CabinClass.BUSINESS, 2, 4),
            (CabinClass.PREMIUM_ECONOMY, 5, 7),
            (CabinClass.ECONOMY, 8, 20),
        ),
        (12,),
    ),
)
FARE_CODES: Sequence[Tuple[str, str]] = (
    ("FFLEX", "First flexible"),
    ("JFLX", "Business flexible"),
    ("ZRESTR", "Business restricted"),
    ("PFLX", "Premium economy flexible"),
    ("YFLX", "Economy flexible"),
    ("MRESTR", "Economy restricted"),
    ("QSAVER", "Deep discount"),
)
# (days to departure bucket, willingness to pay)
PRICING_BUCKETS: Sequence[Tuple[int, str]] = ((0, "320.00"), (7, "250.00"), (21, "180.00"), (60, "140.00"))
ANCILLARIES: Sequence[Tuple[str, str, str]] = (
    ("Checked bag", "Baggage", "45.00"),
    ("Priority boarding", "Service", "15.00"),
    ("Lounge pass", "Service", "60.00"),
)
FIRST_NAMES = ("Ava", "Noah", "Liam", "Mia", "Lucas", "Emma", "Ethan", "Isabella")
LAST_NAMES = ("Johnson", "Williams", "Smith", "Brown", "Garcia", "Lee")


def _random_datetime(now: datetime, days_from_now: int) -> datetime:
    start = now + timedelta(days=days_from_now)
    hour = random.randint(5, 22)
    minute = random.choice((0, 15, 30, 45))
    return start.replace(hour=hour, minute=minute, second=0, microsecond=0)


def _seed_reference_data(
    session: Session, now: datetime, flights: int, accounts: int
) -> Tuple[List[int], List[CallerContext], List[int]]:
    for code, description in FARE_CODES:
        add_fare_code(session, code=code, description=description)
    for days, price in PRICING_BUCKETS:
        add_pricing_rule(session, time_until_departure=days, willingness_to_pay=Decimal(price))
    product_ids = [
        add_ancillary_product(session, name=name, category=category, base_cost=Decimal(cost)).id
        for name, category, cost in ANCILLARIES
    ]

    fleet = []
    for index, (model, max_seats, layout, exit_rows) in enumerate(AIRCRAFT):
        fleet.append(
            add_aircraft(
                session,
                tail_number=f"N{100 + index}FB",
                model=model,
                max_seats=max_seats,
                layout=layout,
                exit_rows=exit_rows,
            )
        )

    flight_ids: List[int] = []
    for index in range(flights):
        origin, destination = random.sample(AIRPORTS, 2)
        route = add_route(
            session,
            origin=origin,
            destination=destination,
            distance_km=random.choice((None, 800, 2500, 6000, 11000)),
        )
        departure = _random_datetime(now, random.randint(1, 90))
        flight = add_flight(
            session,
            flight_number=f"FB{1000 + index}",
            departure_time=departure,
            arrival_time=departure + timedelta(hours=random.randint(2, 12)),
            aircraft_id=random.choice(fleet).id,
            route_id=route.id,
        )
        flight_ids.append(flight.id)

    callers = []
    for index in range(accounts):
        account = add_account(
            session,
            subject=f"user-{index:03d}",
            email=f"test{index}@example.com",
            display_name=f"{random.choice(FIRST_NAMES)} {random.choice(LAST_NAMES)}",
        )
        callers.append(CallerContext(account_id=account.id, subject=account.subject))
    return flight_ids, callers, product_ids


def generate_sample_data(
    session_factory: sessionmaker[Session],
    *,
    flights: int = 6,
    accounts: int = 20,
    bookings: int = 40,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """Populate the database with deterministic pseudo-random data.

    Bookings go through :func:`create_booking` and seats through
    :func:`assign_seat`, so the data obeys every rule the engine enforces.
    Requests the engine refuses are skipped and not counted.
    """

    random.seed(42)
    now = now or utcnow()
    with session_factory() as session:
        flight_ids, callers, product_ids = _seed_reference_data(session, now, flights, accounts)
        session.commit()

    successful = 0
    seated = 0
    for _ in range(bookings):
        caller = random.choice(callers)
        passengers = [
            PassengerDetails(
                first_name=random.choice(FIRST_NAMES),
                last_name=random.choice(LAST_NAMES),
                passport_number=f"X{caller.account_id:04d}{slot}",
            )
            for slot in range(random.randint(1, 3))
        ]
        ancillaries = [
            AncillaryPurchase(product_id=random.choice(product_ids), quantity=random.randint(1, 2))
        ] if random.random() < 0.4 else []
        result = create_booking(
            session_factory,
            BookingRequest(
                flight_id=random.choice(flight_ids),
                fare_code=random.choice(FARE_CODES)[0],
                passengers=passengers,
                ancillaries=ancillaries,
            ),
            caller,
            now=now,
        )
        if not result.ok:
            logger.debug("Sample booking skipped: {}", result.message)
            continue
        successful += 1

        booking = result.value
        first = booking.passengers[0]
        seat_map = get_seat_map(session_factory, booking.flight_instance_id, now=now)
        free = [entry.seat_id for entry in seat_map.value.seats if entry.available] if seat_map.ok else []
        if not free:
            continue
        assigned = assign_seat(
            session_factory, caller, booking.id, first.passenger_id, random.choice(free), now=now
        )
        if assigned.ok:
            seated += 1

    logger.info("Sample data ready: {} bookings, {} seats", successful, seated)
    return {
        "flights": flights,
        "accounts": accounts,
        "bookings": successful,
        "seats": seated,
    }


__all__ = ["generate_sample_data"]
