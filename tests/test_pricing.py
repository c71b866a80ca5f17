from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select

from conftest import make_flight
from flight_booking.catalog import SeatInfo, active_pricing_rules, add_pricing_rule, derive_cabin_class
from flight_booking.models import CabinClass, PriceOfferLog
from flight_booking.pricing import (
    PricingContext,
    best_matching_rules,
    compute_base_fare,
    compute_booking_total,
    compute_seat_price,
    days_until,
    fare_class_multiplier,
    occupancy_multiplier,
    price_seat,
    quote_base_fare,
)
from flight_booking.results import ErrorCategory, FailureKind


def _add_rule(session_factory, **kwargs):
    with session_factory() as session:
        rule = add_pricing_rule(session, **kwargs)
        session.commit()
        return rule


def test_business_fare_at_eighty_percent_load(world, session_factory):
    _add_rule(session_factory, time_until_departure=0, willingness_to_pay=Decimal("200.00"))
    assert world.book(count=4).ok
    assert world.book(count=4).ok

    result = compute_base_fare(session_factory, world.flight_id, "JFLX", now=world.now)

    assert result.ok
    assert result.value == Decimal("700.00")


def test_quote_is_deterministic_and_logged(world, session_factory):
    first = quote_base_fare(session_factory, world.flight_id, "yflx", now=world.now)
    second = quote_base_fare(session_factory, world.flight_id, "YFLX", now=world.now)

    assert first.ok and second.ok
    assert first.value == second.value
    assert first.value.price == Decimal("360.00")
    assert first.value.cabin_class is CabinClass.ECONOMY
    with session_factory() as session:
        assert session.scalar(select(func.count()).select_from(PriceOfferLog)) == 2


def test_distance_fallback_and_deep_discount(world, session_factory):
    assert compute_base_fare(session_factory, world.flight_id, "QSAVER", now=world.now).value == Decimal(
        "300.00"
    )

    no_distance = make_flight(session_factory, departure=world.departure, distance_km=None)
    result = compute_base_fare(session_factory, no_distance, "QSAVER", now=world.now)
    assert result.value == Decimal("150.00")


def test_closest_bucket_at_or_below_days_out_wins(world, session_factory):
    for days, price in ((0, "320.00"), (21, "180.00"), (60, "140.00")):
        _add_rule(session_factory, time_until_departure=days, willingness_to_pay=Decimal(price))

    result = quote_base_fare(session_factory, world.flight_id, "JFLX", now=world.now)

    assert result.value.base_price == Decimal("180.00")
    assert result.value.price == Decimal("450.00")


def test_highest_willingness_to_pay_across_dimensions(world, session_factory):
    _add_rule(session_factory, time_until_departure=0, willingness_to_pay=Decimal("200.00"))
    _add_rule(session_factory, length_of_stay=0, willingness_to_pay=Decimal("500.00"))

    result = quote_base_fare(session_factory, world.flight_id, "YFLX", now=world.now)

    assert result.value.base_price == Decimal("500.00")
    assert result.value.price == Decimal("600.00")


def test_rule_without_price_falls_back_to_distance(world, session_factory):
    _add_rule(session_factory, time_until_departure=0, willingness_to_pay=None)

    result = quote_base_fare(session_factory, world.flight_id, "YFLX", now=world.now)

    assert result.value.base_price == Decimal("300.00")
    assert result.value.context_rule_id is None


def test_best_matching_rules_ignores_higher_buckets(world, session_factory):
    near = _add_rule(session_factory, time_until_departure=3, willingness_to_pay=Decimal("1"))
    _add_rule(session_factory, time_until_departure=10, willingness_to_pay=Decimal("2"))

    with session_factory() as session:
        matched = best_matching_rules(active_pricing_rules(session), PricingContext(days_to_departure=5))
    assert [rule.id for rule in matched] == [near.id]


def test_fare_lookup_failures(world, session_factory):
    unknown_flight = compute_base_fare(session_factory, 999, "YFLX", now=world.now)
    inactive = compute_base_fare(session_factory, world.flight_id, "OLDFARE", now=world.now)
    blank = compute_base_fare(session_factory, world.flight_id, "  ", now=world.now)

    assert unknown_flight.kind is FailureKind.NOT_FOUND
    assert inactive.kind is FailureKind.NOT_FOUND
    assert blank.category is ErrorCategory.INVALID_INPUT


def test_days_until_truncates_toward_zero():
    now = datetime(2026, 1, 10, 12, 0)
    assert days_until(now + timedelta(days=1, hours=23), now) == 1
    assert days_until(now - timedelta(days=1, hours=12), now) == -1
    assert days_until(now + timedelta(hours=5), now) == 0


def test_occupancy_thresholds_are_strict():
    assert occupancy_multiplier(91, 100) == Decimal("2.0")
    assert occupancy_multiplier(90, 100) == Decimal("1.4")
    assert occupancy_multiplier(76, 100) == Decimal("1.4")
    assert occupancy_multiplier(75, 100) == Decimal("1")
    assert occupancy_multiplier(5, 0) == Decimal("1")


def test_cabin_class_derivation_and_multipliers():
    assert derive_cabin_class("DFLEX") is CabinClass.FIRST
    assert derive_cabin_class("jflx") is CabinClass.BUSINESS
    assert derive_cabin_class("WPREM1") is CabinClass.PREMIUM_ECONOMY
    assert derive_cabin_class("MRESTR") is CabinClass.ECONOMY
    assert derive_cabin_class("QSAVER") is None
    assert fare_class_multiplier(CabinClass.FIRST) == Decimal("4.0")
    assert fare_class_multiplier(None) == Decimal("1.0")


def _seat(number: str, cabin: CabinClass, *, exit_row: bool = False) -> SeatInfo:
    return SeatInfo(
        id=1,
        aircraft_id=1,
        seat_number=number,
        cabin_class=cabin,
        is_window=False,
        is_exit_row=exit_row,
    )


def test_seat_surcharge_table():
    assert price_seat(_seat("1A", CabinClass.FIRST), days_to_departure=30) is None
    assert price_seat(_seat("4A", CabinClass.BUSINESS, exit_row=True), days_to_departure=30) is None
    assert price_seat(_seat("14A", CabinClass.ECONOMY, exit_row=True), days_to_departure=30) == Decimal("120.00")
    assert price_seat(_seat("8C", CabinClass.PREMIUM_ECONOMY), days_to_departure=30) == Decimal("50.00")
    assert price_seat(_seat("29F", CabinClass.ECONOMY), days_to_departure=30) == Decimal("30.00")
    assert price_seat(_seat("31C", CabinClass.ECONOMY), days_to_departure=30) is None


def test_seat_price_applies_last_minute_and_occupancy():
    seat = _seat("12A", CabinClass.ECONOMY)
    assert price_seat(seat, days_to_departure=3) == Decimal("45.00")
    assert price_seat(seat, days_to_departure=3, occupied=95, capacity=100) == Decimal("90.00")
    assert price_seat(seat, days_to_departure=None, occupied=95, capacity=100) == Decimal("30.00")


def test_compute_seat_price_against_store(world, session_factory):
    exit_row = compute_seat_price(session_factory, world.seats["4A"], world.flight_id, now=world.now)
    business = compute_seat_price(session_factory, world.seats["1A"], world.flight_id, now=world.now)
    late = compute_seat_price(
        session_factory,
        world.seats["3A"],
        world.flight_id,
        now=world.departure - timedelta(days=2),
    )
    no_flight = compute_seat_price(session_factory, world.seats["2B"], 999, now=world.now)
    no_seat = compute_seat_price(session_factory, 999, world.flight_id, now=world.now)

    assert exit_row.value == Decimal("120.00")
    assert business.ok and business.value is None
    assert late.value == Decimal("45.00")
    assert no_flight.value == Decimal("50.00")
    assert no_seat.kind is FailureKind.NOT_FOUND


def test_booking_total_includes_ancillaries(world, session_factory):
    request = world.request(2, ancillaries=[(world.bag_id, 2)])

    result = compute_booking_total(session_factory, request, now=world.now)

    assert result.value == Decimal("810.00")


def test_booking_total_skips_unavailable_products(world, session_factory):
    request = world.request(2, ancillaries=[(world.retired_product_id, 1), (999, 1)])

    result = compute_booking_total(session_factory, request, now=world.now)

    assert result.value == Decimal("720.00")


def test_booking_total_rejects_zero_passengers(world, session_factory):
    result = compute_booking_total(session_factory, world.request(0), now=world.now)

    assert result.kind is FailureKind.INVALID_INPUT


def test_quote_survives_a_broken_offer_log(world, session_factory, monkeypatch):
    def broken(**kwargs):
        raise RuntimeError("log store unavailable")

    monkeypatch.setattr("flight_booking.pricing.PriceOfferLog", broken)

    result = quote_base_fare(session_factory, world.flight_id, "YFLX", now=world.now)

    assert result.ok
    assert result.value.price == Decimal("360.00")
    with session_factory() as session:
        assert session.scalar(select(func.count()).select_from(PriceOfferLog)) == 0
