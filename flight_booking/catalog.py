"""Read access to reference data the engine does not own.

Flights, seats, fare codes and ancillary products are maintained elsewhere.
The engine only reads them, through the snapshot helpers below. The ``add_*``
helpers exist to populate a store for tests, demos and the CLI.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .models import (
    Account,
    Aircraft,
    AncillaryProduct,
    CabinClass,
    ContextualPricingRule,
    FareCode,
    FlightInstance,
    FlightStatus,
    Route,
    Seat,
)

# First match wins. Order matters: "DFLEX" contains "FLEX".
FARE_CODE_CABIN_TOKENS: Tuple[Tuple[CabinClass, Tuple[str, ...]], ...] = (
    (CabinClass.FIRST, ("FLEX", "FRESTR", "XGOV")),
    (CabinClass.BUSINESS, ("JFLX", "BRESTR", "DFLEX", "ZRESTR")),
    (CabinClass.PREMIUM_ECONOMY, ("PFLX", "PRESTR", "WPREM", "NPROM")),
    (CabinClass.ECONOMY, ("YFLX", "MRESTR", "VPROM")),
)

_ROW_DIGITS = re.compile(r"\d+")


def derive_cabin_class(code: str) -> Optional[CabinClass]:
    """Cabin class implied by a fare basis code, ``None`` for deep discounts."""

    upper = code.upper()
    for cabin, tokens in FARE_CODE_CABIN_TOKENS:
        if any(token in upper for token in tokens):
            return cabin
    return None


def seat_row(seat_number: str) -> Optional[int]:
    match = _ROW_DIGITS.search(seat_number)
    return int(match.group()) if match else None


@dataclass(frozen=True)
class FlightInfo:
    id: int
    flight_number: str
    status: FlightStatus
    departure: datetime
    arrival: datetime
    aircraft_id: Optional[int]
    capacity: int

    def is_mutable(self, now: datetime) -> bool:
        return self.status is FlightStatus.SCHEDULED and self.departure > now


@dataclass(frozen=True)
class FareCodeInfo:
    code: str
    description: str
    rules: str
    cabin_class: Optional[CabinClass]


@dataclass(frozen=True)
class ProductInfo:
    id: int
    name: str
    active: bool
    unit_price: Decimal


@dataclass(frozen=True)
class SeatInfo:
    id: int
    aircraft_id: int
    seat_number: str
    cabin_class: CabinClass
    is_window: bool
    is_exit_row: bool

    @property
    def row(self) -> Optional[int]:
        return seat_row(self.seat_number)


def _flight_info(flight: FlightInstance) -> FlightInfo:
    return FlightInfo(
        id=flight.id,
        flight_number=flight.flight_number,
        status=flight.status,
        departure=flight.scheduled_departure,
        arrival=flight.scheduled_arrival,
        aircraft_id=flight.aircraft_id,
        capacity=flight.capacity,
    )


def get_flight(session: Session, flight_id: int, *, for_update: bool = False) -> Optional[FlightInfo]:
    """Snapshot of a flight; ``for_update`` locks the row for the current transaction."""

    stmt = (
        select(FlightInstance)
        .options(selectinload(FlightInstance.aircraft))
        .where(FlightInstance.id == flight_id)
    )
    if for_update:
        stmt = stmt.with_for_update(of=FlightInstance)
    flight = session.scalars(stmt).first()
    return _flight_info(flight) if flight else None


def get_route_distance(session: Session, flight_id: int) -> Optional[int]:
    return session.scalar(
        select(Route.distance_km)
        .join(FlightInstance, FlightInstance.route_id == Route.id)
        .where(FlightInstance.id == flight_id)
    )


def get_fare_code(session: Session, code: str) -> Optional[FareCodeInfo]:
    """Active fare code by code (case-insensitive), with its cabin class resolved."""

    fare = session.get(FareCode, code.strip().upper())
    if fare is None or not fare.is_active:
        return None
    return FareCodeInfo(
        code=fare.code,
        description=fare.description,
        rules=fare.rules,
        cabin_class=fare.cabin_class or derive_cabin_class(fare.code),
    )


def get_ancillary_product(session: Session, product_id: int) -> Optional[ProductInfo]:
    product = session.get(AncillaryProduct, product_id)
    if product is None:
        return None
    return ProductInfo(
        id=product.id,
        name=product.name,
        active=product.is_active,
        unit_price=product.base_cost if product.base_cost is not None else Decimal("0"),
    )


def get_seat(session: Session, seat_id: int) -> Optional[SeatInfo]:
    seat = session.get(Seat, seat_id)
    if seat is None:
        return None
    return _seat_info(seat)


def list_aircraft_seats(session: Session, aircraft_id: int) -> List[SeatInfo]:
    seats = session.scalars(
        select(Seat).where(Seat.aircraft_id == aircraft_id).order_by(Seat.id)
    )
    return [_seat_info(seat) for seat in seats]


def _seat_info(seat: Seat) -> SeatInfo:
    return SeatInfo(
        id=seat.id,
        aircraft_id=seat.aircraft_id,
        seat_number=seat.seat_number,
        cabin_class=seat.cabin_class,
        is_window=seat.is_window,
        is_exit_row=seat.is_exit_row,
    )


def active_pricing_rules(session: Session) -> List[ContextualPricingRule]:
    return list(
        session.scalars(
            select(ContextualPricingRule)
            .where(ContextualPricingRule.is_active.is_(True))
            .order_by(ContextualPricingRule.id)
        )
    )


def add_account(session: Session, *, subject: str, email: str, display_name: str = "") -> Account:
    account = Account(subject=subject, email=email, display_name=display_name)
    session.add(account)
    session.flush()
    return account


def add_route(session: Session, *, origin: str, destination: str, distance_km: Optional[int]) -> Route:
    route = Route(origin=origin.upper(), destination=destination.upper(), distance_km=distance_km)
    session.add(route)
    session.flush()
    return route


def add_aircraft(
    session: Session,
    *,
    tail_number: str,
    model: str,
    max_seats: Optional[int],
    layout: Iterable[Tuple[CabinClass, int, int]] = (),
    seat_letters: Sequence[str] = tuple("ABCDEF"),
    exit_rows: Sequence[int] = (),
) -> Aircraft:
    """Create an aircraft and, optionally, its seats.

    ``layout`` is a sequence of ``(cabin, first_row, last_row)`` ranges. Seats
    with letter ``A`` or the last letter are flagged as windows.
    """

    aircraft = Aircraft(tail_number=tail_number, model=model, max_seats=max_seats)
    session.add(aircraft)
    session.flush()
    for cabin, first_row, last_row in layout:
        for row in range(first_row, last_row + 1):
            for letter in seat_letters:
                add_seat(
                    session,
                    aircraft_id=aircraft.id,
                    seat_number=f"{row}{letter}",
                    cabin_class=cabin,
                    is_window=letter in (seat_letters[0], seat_letters[-1]),
                    is_exit_row=row in exit_rows,
                    flush=False,
                )
    session.flush()
    return aircraft


def add_seat(
    session: Session,
    *,
    aircraft_id: int,
    seat_number: str,
    cabin_class: CabinClass,
    is_window: bool = False,
    is_exit_row: bool = False,
    flush: bool = True,
) -> Seat:
    seat = Seat(
        aircraft_id=aircraft_id,
        seat_number=seat_number,
        cabin_class=cabin_class,
        is_window=is_window,
        is_exit_row=is_exit_row,
    )
    session.add(seat)
    if flush:
        session.flush()
    return seat


def add_flight(
    session: Session,
    *,
    flight_number: str,
    departure_time: datetime,
    arrival_time: datetime,
    aircraft_id: Optional[int] = None,
    route_id: Optional[int] = None,
    status: FlightStatus = FlightStatus.SCHEDULED,
) -> FlightInstance:
    """Create a flight entry."""

    flight = FlightInstance(
        flight_number=flight_number,
        scheduled_departure=departure_time,
        scheduled_arrival=arrival_time,
        aircraft_id=aircraft_id,
        route_id=route_id,
        status=status,
    )
    session.add(flight)
    session.flush()
    return flight


def add_fare_code(
    session: Session,
    *,
    code: str,
    description: str = "",
    rules: str = "",
    cabin_class: Optional[CabinClass] = None,
    is_active: bool = True,
) -> FareCode:
    fare = FareCode(
        code=code.upper(),
        description=description,
        rules=rules,
        cabin_class=cabin_class,
        is_active=is_active,
    )
    session.add(fare)
    session.flush()
    return fare


def add_pricing_rule(
    session: Session,
    *,
    willingness_to_pay: Optional[Decimal],
    time_until_departure: Optional[int] = None,
    length_of_stay: Optional[int] = None,
    competitor_fares: str = "",
) -> ContextualPricingRule:
    rule = ContextualPricingRule(
        time_until_departure=time_until_departure,
        length_of_stay=length_of_stay,
        willingness_to_pay=willingness_to_pay,
        competitor_fares=competitor_fares,
    )
    session.add(rule)
    session.flush()
    return rule


def add_ancillary_product(
    session: Session,
    *,
    name: str,
    base_cost: Optional[Decimal],
    category: str = "",
    unit_of_measure: str = "each",
    is_active: bool = True,
) -> AncillaryProduct:
    product = AncillaryProduct(
        name=name,
        base_cost=base_cost,
        category=category,
        unit_of_measure=unit_of_measure,
        is_active=is_active,
    )
    session.add(product)
    session.flush()
    return product


__all__ = [
    "FARE_CODE_CABIN_TOKENS",
    "FareCodeInfo",
    "FlightInfo",
    "ProductInfo",
    "SeatInfo",
    "active_pricing_rules",
    "add_account",
    "add_aircraft",
    "add_ancillary_product",
    "add_fare_code",
    "add_flight",
    "add_pricing_rule",
    "add_route",
    "add_seat",
    "derive_cabin_class",
    "get_ancillary_product",
    "get_fare_code",
    "get_flight",
    "get_route_distance",
    "get_seat",
    "list_aircraft_seats",
    "seat_row",
]
