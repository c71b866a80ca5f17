"""Deterministic fare, seat and booking-total pricing.

A base fare is composed of four steps, applied in order:

1. the flight context (whole days until departure, length of stay 0),
2. a base price from the best matching contextual rules, or a distance fallback,
3. the fare-class multiplier of :data:`FARE_CLASS_MULTIPLIERS`,
4. the occupancy multiplier of :data:`OCCUPANCY_MULTIPLIERS`,

then rounded to cents. Nothing here is random; repeated quotes against the
same store state and clock return the same price.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from .availability import count_occupants
from .catalog import (
    SeatInfo,
    active_pricing_rules,
    get_ancillary_product,
    get_fare_code,
    get_flight,
    get_route_distance,
    get_seat,
)
from .database import session_scope
from .models import CabinClass, ContextualPricingRule, PriceOfferLog, utcnow
from .request import BookingRequest
from .results import Failure, FailureKind, Result, Success

CENT = Decimal("0.01")
RATE_PER_KM = Decimal("0.15")
DEFAULT_DISTANCE_KM = 1000

FARE_CLASS_MULTIPLIERS: Dict[CabinClass, Decimal] = {
    CabinClass.FIRST: Decimal("4.0"),
    CabinClass.BUSINESS: Decimal("2.5"),
    CabinClass.PREMIUM_ECONOMY: Decimal("1.5"),
    CabinClass.ECONOMY: Decimal("1.2"),
}
DEFAULT_FARE_CLASS_MULTIPLIER = Decimal("1.0")

# (load factor strictly above, multiplier), highest threshold first.
OCCUPANCY_MULTIPLIERS: Tuple[Tuple[Decimal, Decimal], ...] = (
    (Decimal("0.90"), Decimal("2.0")),
    (Decimal("0.75"), Decimal("1.4")),
)

EXIT_ROW_SURCHARGE = Decimal("120.00")
PREMIUM_ECONOMY_SURCHARGE = Decimal("50.00")
FRONT_ECONOMY_SURCHARGE = Decimal("30.00")
FRONT_ECONOMY_ROW_LIMIT = 30
LAST_MINUTE_DAYS = 7
LAST_MINUTE_SEAT_MULTIPLIER = Decimal("1.5")

FREE_SEAT_CABINS = frozenset({CabinClass.FIRST, CabinClass.BUSINESS})


@dataclass(frozen=True)
class PricingContext:
    days_to_departure: int
    length_of_stay: int = 0


@dataclass(frozen=True)
class FareQuote:
    flight_id: int
    fare_code: str
    cabin_class: Optional[CabinClass]
    base_price: Decimal
    fare_class_multiplier: Decimal
    occupancy_multiplier: Decimal
    price: Decimal
    context_rule_id: Optional[int]


def round_price(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_EVEN)


def days_until(departure: datetime, now: datetime) -> int:
    """Whole days until ``departure``, truncated toward zero; negative once departed."""

    return int((departure - now).total_seconds() / 86400)


def fare_class_multiplier(cabin_class: Optional[CabinClass]) -> Decimal:
    if cabin_class is None:
        return DEFAULT_FARE_CLASS_MULTIPLIER
    return FARE_CLASS_MULTIPLIERS.get(cabin_class, DEFAULT_FARE_CLASS_MULTIPLIER)


def occupancy_multiplier(occupied: int, capacity: int) -> Decimal:
    if capacity <= 0:
        return Decimal("1")
    load = Decimal(occupied) / Decimal(capacity)
    for threshold, multiplier in OCCUPANCY_MULTIPLIERS:
        if load > threshold:
            return multiplier
    return Decimal("1")


def seat_surcharge(seat: SeatInfo) -> Optional[Decimal]:
    """Flat surcharge for choosing ``seat``; ``None`` means the seat is free."""

    if seat.cabin_class in FREE_SEAT_CABINS:
        return None
    if seat.is_exit_row:
        return EXIT_ROW_SURCHARGE
    if seat.cabin_class is CabinClass.PREMIUM_ECONOMY:
        return PREMIUM_ECONOMY_SURCHARGE
    row = seat.row
    if seat.cabin_class is CabinClass.ECONOMY and row is not None and row < FRONT_ECONOMY_ROW_LIMIT:
        return FRONT_ECONOMY_SURCHARGE
    return None


def price_seat(
    seat: SeatInfo,
    *,
    days_to_departure: Optional[int],
    occupied: int = 0,
    capacity: int = 0,
) -> Optional[Decimal]:
    """Seat price from its surcharge and the live flight context.

    ``days_to_departure`` of ``None`` means the flight is unknown and the bare
    surcharge applies.
    """

    price = seat_surcharge(seat)
    if price is None:
        return None
    if days_to_departure is not None:
        if days_to_departure < LAST_MINUTE_DAYS:
            price *= LAST_MINUTE_SEAT_MULTIPLIER
        price *= occupancy_multiplier(occupied, capacity)
    return round_price(price)


def best_matching_rules(
    rules: Sequence[ContextualPricingRule], context: PricingContext
) -> List[ContextualPricingRule]:
    """Closest bucket at or below the context value, per dimension.

    Time-to-departure and length-of-stay are matched independently; a rule
    that wins both dimensions is returned once.
    """

    matched: List[ContextualPricingRule] = []
    for attribute, value in (
        ("time_until_departure", context.days_to_departure),
        ("length_of_stay", context.length_of_stay),
    ):
        best: Optional[ContextualPricingRule] = None
        for rule in rules:
            bucket = getattr(rule, attribute)
            if bucket is None or bucket > value:
                continue
            if best is None or bucket > getattr(best, attribute):
                best = rule
        if best is not None and best not in matched:
            matched.append(best)
    return matched


def _contextual_base(
    rules: Sequence[ContextualPricingRule], context: PricingContext
) -> Tuple[Optional[Decimal], Optional[int]]:
    matched = best_matching_rules(rules, context)
    prices = [rule.willingness_to_pay for rule in matched if rule.willingness_to_pay is not None]
    if not prices:
        return None, None
    return max(prices), matched[0].id


def _quote(session: Session, flight_id: int, fare_code: str, now: datetime) -> Result[FareQuote]:
    if not fare_code or not fare_code.strip():
        return Failure.of(FailureKind.INVALID_INPUT, "A fare code is required.")
    flight = get_flight(session, flight_id)
    if flight is None:
        return Failure.of(FailureKind.NOT_FOUND, "Flight instance not found.")
    fare = get_fare_code(session, fare_code)
    if fare is None:
        return Failure.of(FailureKind.NOT_FOUND, f"Fare basis code '{fare_code}' not found.")

    context = PricingContext(days_to_departure=days_until(flight.departure, now))
    base, rule_id = _contextual_base(active_pricing_rules(session), context)
    if base is None:
        distance = get_route_distance(session, flight_id) or DEFAULT_DISTANCE_KM
        base = Decimal(distance) * RATE_PER_KM

    class_factor = fare_class_multiplier(fare.cabin_class)
    load_factor = occupancy_multiplier(count_occupants(session, flight_id), flight.capacity)
    return Success(
        FareQuote(
            flight_id=flight_id,
            fare_code=fare.code,
            cabin_class=fare.cabin_class,
            base_price=base,
            fare_class_multiplier=class_factor,
            occupancy_multiplier=load_factor,
            price=round_price(base * class_factor * load_factor),
            context_rule_id=rule_id,
        )
    )


def log_price_offer(session_factory: sessionmaker[Session], quote: FareQuote) -> bool:
    """Record a quote for later analysis. Failures are logged, never raised."""

    try:
        with session_scope(session_factory) as session:
            session.add(
                PriceOfferLog(
                    flight_instance_id=quote.flight_id,
                    fare_code=quote.fare_code,
                    quoted_price=quote.price,
                    context_rule_id=quote.context_rule_id,
                )
            )
    except Exception as exc:
        logger.bind(flight_id=quote.flight_id, fare_code=quote.fare_code).warning(
            "Failed to log price offer: {}", exc
        )
        return False
    return True


def quote_base_fare(
    session_factory: sessionmaker[Session],
    flight_id: int,
    fare_code: str,
    *,
    now: Optional[datetime] = None,
) -> Result[FareQuote]:
    """Price one passenger on ``flight_id`` under ``fare_code``, with the breakdown."""

    now = now or utcnow()
    with session_factory() as session:
        result = _quote(session, flight_id, fare_code, now)
    if not result.ok:
        logger.bind(flight_id=flight_id, fare_code=fare_code).warning(
            "Fare quote rejected: {}", result.message
        )
        return result
    log_price_offer(session_factory, result.value)
    logger.bind(flight_id=flight_id, fare_code=result.value.fare_code).debug(
        "Quoted {}", result.value.price
    )
    return result


def compute_base_fare(
    session_factory: sessionmaker[Session],
    flight_id: int,
    fare_code: str,
    *,
    now: Optional[datetime] = None,
) -> Result[Decimal]:
    result = quote_base_fare(session_factory, flight_id, fare_code, now=now)
    if not result.ok:
        return result
    return Success(result.value.price)


def compute_seat_price(
    session_factory: sessionmaker[Session],
    seat_id: int,
    flight_id: int,
    *,
    now: Optional[datetime] = None,
) -> Result[Optional[Decimal]]:
    now = now or utcnow()
    with session_factory() as session:
        seat = get_seat(session, seat_id)
        if seat is None:
            return Failure.of(FailureKind.NOT_FOUND, f"Seat {seat_id} not found.")
        flight = get_flight(session, flight_id)
        if flight is None:
            logger.bind(flight_id=flight_id).warning("Pricing seat without flight context")
            return Success(price_seat(seat, days_to_departure=None))
        occupied = count_occupants(session, flight_id)
    return Success(
        price_seat(
            seat,
            days_to_departure=days_until(flight.departure, now),
            occupied=occupied,
            capacity=flight.capacity,
        )
    )


def compute_booking_total(
    session_factory: sessionmaker[Session],
    request: BookingRequest,
    *,
    now: Optional[datetime] = None,
) -> Result[Decimal]:
    """Quote a whole booking: fare per passenger plus ancillaries.

    Ancillaries whose product is missing or inactive are skipped here. The
    booking transaction re-checks them and refuses to commit without them.
    """

    if request.passenger_count == 0:
        return Failure.of(FailureKind.INVALID_INPUT, "Cannot calculate price for zero passengers.")
    fare = compute_base_fare(session_factory, request.flight_id, request.fare_code, now=now)
    if not fare.ok:
        return fare

    total = fare.value * request.passenger_count
    with session_factory() as session:
        for purchase in request.ancillaries:
            product = get_ancillary_product(session, purchase.product_id)
            if product is None or not product.active:
                logger.bind(product_id=purchase.product_id).warning(
                    "Skipping unavailable ancillary product in quote"
                )
                continue
            total += product.unit_price * purchase.quantity
    return Success(round_price(total))


__all__ = [
    "DEFAULT_DISTANCE_KM",
    "EXIT_ROW_SURCHARGE",
    "FARE_CLASS_MULTIPLIERS",
    "FRONT_ECONOMY_SURCHARGE",
    "FareQuote",
    "OCCUPANCY_MULTIPLIERS",
    "PREMIUM_ECONOMY_SURCHARGE",
    "PricingContext",
    "RATE_PER_KM",
    "best_matching_rules",
    "compute_base_fare",
    "compute_booking_total",
    "compute_seat_price",
    "days_until",
    "fare_class_multiplier",
    "log_price_offer",
    "occupancy_multiplier",
    "price_seat",
    "quote_base_fare",
    "round_price",
    "seat_surcharge",
]
