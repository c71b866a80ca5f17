from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterator, Optional

import pytest
from sqlalchemy import update

from flight_booking.booking import create_booking
from flight_booking.catalog import (
    add_account,
    add_aircraft,
    add_ancillary_product,
    add_fare_code,
    add_flight,
    add_route,
    add_seat,
    list_aircraft_seats,
)
from flight_booking.database import create_session_factory
from flight_booking.identity import CallerContext
from flight_booking.models import Base, CabinClass, FlightInstance, FlightStatus, utcnow
from flight_booking.request import AncillaryPurchase, BookingRequest, PassengerDetails


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = create_session_factory(f"sqlite+pysqlite:///{tmp_path / 'booking.db'}")
    Base.metadata.create_all(engine)
    yield factory
    engine.dispose()


def make_flight(
    session_factory,
    *,
    departure: datetime,
    max_seats: Optional[int] = 10,
    distance_km: Optional[int] = 2000,
    status: FlightStatus = FlightStatus.SCHEDULED,
    tail_number: str = "N900FB",
) -> int:
    with session_factory() as session:
        aircraft = add_aircraft(session, tail_number=tail_number, model="E190", max_seats=max_seats)
        route = add_route(session, origin="SEA", destination="DEN", distance_km=distance_km)
        flight = add_flight(
            session,
            flight_number="FB900",
            departure_time=departure,
            arrival_time=departure + timedelta(hours=3),
            aircraft_id=aircraft.id,
            route_id=route.id,
            status=status,
        )
        session.commit()
        return flight.id


@dataclass
class World:
    session_factory: object
    now: datetime
    departure: datetime
    flight_id: int
    aircraft_id: int
    seats: Dict[str, int]
    foreign_seat_id: int
    bag_id: int
    retired_product_id: int
    alice: CallerContext
    bob: CallerContext
    admin: CallerContext
    _passports: Iterator[int] = field(default_factory=lambda: iter(range(1, 10_000)))

    def passengers(self, count: int):
        return [
            PassengerDetails(
                first_name="Pax",
                last_name=f"Number{index}",
                passport_number=f"P{next(self._passports):05d}",
            )
            for index in range(count)
        ]

    def request(
        self,
        count: int = 1,
        *,
        fare_code: str = "YFLX",
        ancillaries=(),
        flight_id: Optional[int] = None,
    ) -> BookingRequest:
        return BookingRequest(
            flight_id=flight_id or self.flight_id,
            fare_code=fare_code,
            passengers=self.passengers(count),
            ancillaries=[AncillaryPurchase(product_id=pid, quantity=qty) for pid, qty in ancillaries],
        )

    def book(self, caller: Optional[CallerContext] = None, count: int = 1, **kwargs):
        now = kwargs.pop("now", self.now)
        return create_booking(
            self.session_factory, self.request(count, **kwargs), caller or self.alice, now=now
        )

    def set_flight_status(self, status: FlightStatus, flight_id: Optional[int] = None) -> None:
        with self.session_factory() as session:
            session.execute(
                update(FlightInstance)
                .where(FlightInstance.id == (flight_id or self.flight_id))
                .values(status=status)
            )
            session.commit()


@pytest.fixture
def world(session_factory) -> World:
    """One 10-seat flight thirty days out, three accounts and a small catalog.

    Seats use letters A and B: row 1 Business, row 2 Premium Economy,
    rows 3-5 Economy with row 4 an exit row. No pricing rules exist, so the
    base fare falls back to 2000 km x 0.15 = 300.00.
    """

    now = utcnow().replace(microsecond=0)
    departure = now + timedelta(days=30)
    with session_factory() as session:
        aircraft = add_aircraft(
            session,
            tail_number="N100FB",
            model="A220",
            max_seats=10,
            layout=(
                (CabinClass.BUSINESS, 1, 1),
                (CabinClass.PREMIUM_ECONOMY, 2, 2),
                (CabinClass.ECONOMY, 3, 5),
            ),
            seat_letters=("A", "B"),
            exit_rows=(4,),
        )
        other = add_aircraft(session, tail_number="N200FB", model="E175", max_seats=1)
        foreign = add_seat(session, aircraft_id=other.id, seat_number="3A", cabin_class=CabinClass.ECONOMY)
        route = add_route(session, origin="LAX", destination="JFK", distance_km=2000)
        flight = add_flight(
            session,
            flight_number="FB100",
            departure_time=departure,
            arrival_time=departure + timedelta(hours=5),
            aircraft_id=aircraft.id,
            route_id=route.id,
        )
        for code in ("JFLX", "YFLX", "QSAVER"):
            add_fare_code(session, code=code, description=code)
        add_fare_code(session, code="OLDFARE", is_active=False)
        bag = add_ancillary_product(session, name="Checked bag", base_cost=Decimal("45.00"))
        retired = add_ancillary_product(
            session, name="Hot meal", base_cost=Decimal("12.50"), is_active=False
        )
        alice = add_account(session, subject="alice", email="alice@example.com")
        bob = add_account(session, subject="bob", email="bob@example.com")
        carol = add_account(session, subject="carol", email="carol@example.com")
        seats = {seat.seat_number: seat.id for seat in list_aircraft_seats(session, aircraft.id)}
        world = World(
            session_factory=session_factory,
            now=now,
            departure=departure,
            flight_id=flight.id,
            aircraft_id=aircraft.id,
            seats=seats,
            foreign_seat_id=foreign.id,
            bag_id=bag.id,
            retired_product_id=retired.id,
            alice=CallerContext(account_id=alice.id, subject="alice"),
            bob=CallerContext(account_id=bob.id, subject="bob"),
            admin=CallerContext(account_id=carol.id, subject="carol", roles=frozenset({"Admin"})),
        )
        session.commit()
    return world
