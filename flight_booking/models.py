"""SQLAlchemy models for the booking engine."""
from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation used by every datetime column."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


class FlightStatus(str, enum.Enum):
    SCHEDULED = "Scheduled"
    DEPARTED = "Departed"
    ARRIVED = "Arrived"
    CANCELLED = "Cancelled"


class BookingStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"


class CabinClass(str, enum.Enum):
    FIRST = "First"
    BUSINESS = "Business"
    PREMIUM_ECONOMY = "Premium Economy"
    ECONOMY = "Economy"


def _enum_column(enum_cls: type[enum.Enum]) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (UniqueConstraint("subject", name="uq_account_subject"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    subject: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(120), nullable=False)
    display_name: Mapped[str] = mapped_column(String(120), default="", nullable=False)

    passengers: Mapped[List["Passenger"]] = relationship(back_populates="account")


class Route(Base):
    __tablename__ = "routes"

    id: Mapped[int] = mapped_column(primary_key=True)
    origin: Mapped[str] = mapped_column(String(3), nullable=False)
    destination: Mapped[str] = mapped_column(String(3), nullable=False)
    distance_km: Mapped[Optional[int]] = mapped_column(Integer)


class Aircraft(Base):
    __tablename__ = "aircraft"
    __table_args__ = (UniqueConstraint("tail_number", name="uq_aircraft_tail"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    tail_number: Mapped[str] = mapped_column(String(10), nullable=False)
    model: Mapped[str] = mapped_column(String(40), nullable=False)
    max_seats: Mapped[Optional[int]] = mapped_column(Integer)

    seats: Mapped[List["Seat"]] = relationship(back_populates="aircraft")


class FlightInstance(Base):
    __tablename__ = "flight_instances"
    __table_args__ = (
        CheckConstraint("scheduled_arrival > scheduled_departure", name="ck_arrival_after_departure"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    flight_number: Mapped[str] = mapped_column(String(8), nullable=False)
    route_id: Mapped[Optional[int]] = mapped_column(ForeignKey("routes.id"))
    aircraft_id: Mapped[Optional[int]] = mapped_column(ForeignKey("aircraft.id"))
    scheduled_departure: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    scheduled_arrival: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[FlightStatus] = mapped_column(
        _enum_column(FlightStatus), default=FlightStatus.SCHEDULED, nullable=False
    )

    route: Mapped[Optional[Route]] = relationship()
    aircraft: Mapped[Optional[Aircraft]] = relationship()
    bookings: Mapped[List["Booking"]] = relationship(back_populates="flight")

    @property
    def capacity(self) -> int:
        if self.aircraft is None or not self.aircraft.max_seats:
            return 0
        return self.aircraft.max_seats


class Seat(Base):
    __tablename__ = "seats"
    __table_args__ = (
        UniqueConstraint("aircraft_id", "seat_number", name="uq_aircraft_seat_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    aircraft_id: Mapped[int] = mapped_column(ForeignKey("aircraft.id"), nullable=False)
    seat_number: Mapped[str] = mapped_column(String(4), nullable=False)
    cabin_class: Mapped[CabinClass] = mapped_column(_enum_column(CabinClass), nullable=False)
    is_window: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_exit_row: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    aircraft: Mapped[Aircraft] = relationship(back_populates="seats")


class FareCode(Base):
    __tablename__ = "fare_codes"

    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    description: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    rules: Mapped[str] = mapped_column(Text, default="", nullable=False)
    cabin_class: Mapped[Optional[CabinClass]] = mapped_column(_enum_column(CabinClass))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ContextualPricingRule(Base):
    __tablename__ = "contextual_pricing_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    time_until_departure: Mapped[Optional[int]] = mapped_column(Integer)
    length_of_stay: Mapped[Optional[int]] = mapped_column(Integer)
    competitor_fares: Mapped[str] = mapped_column(Text, default="", nullable=False)
    willingness_to_pay: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class AncillaryProduct(Base):
    __tablename__ = "ancillary_products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(String(20), default="", nullable=False)
    base_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    unit_of_measure: Mapped[str] = mapped_column(String(10), default="each", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Passenger(Base):
    __tablename__ = "passengers"
    __table_args__ = (
        UniqueConstraint("account_id", "passport_number", name="uq_account_passport"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date)
    passport_number: Mapped[str] = mapped_column(String(20), nullable=False)

    account: Mapped[Account] = relationship(back_populates="passengers")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("reference", name="uq_booking_reference"),
        CheckConstraint("total_price >= 0", name="ck_total_price_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    reference: Mapped[str] = mapped_column(String(12), nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    flight_instance_id: Mapped[int] = mapped_column(
        ForeignKey("flight_instances.id"), nullable=False
    )
    fare_code: Mapped[str] = mapped_column(ForeignKey("fare_codes.code"), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _enum_column(BookingStatus), default=BookingStatus.PENDING, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    flight: Mapped[FlightInstance] = relationship(back_populates="bookings")
    passengers: Mapped[List["BookingPassenger"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan", order_by="BookingPassenger.passenger_id"
    )
    ancillary_sales: Mapped[List["AncillarySale"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan", order_by="AncillarySale.id"
    )


class BookingPassenger(Base):
    __tablename__ = "booking_passengers"
    __table_args__ = (
        UniqueConstraint("flight_instance_id", "seat_id", name="uq_flight_seat"),
    )

    booking_id: Mapped[int] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True
    )
    passenger_id: Mapped[int] = mapped_column(ForeignKey("passengers.id"), primary_key=True)
    flight_instance_id: Mapped[int] = mapped_column(
        ForeignKey("flight_instances.id"), nullable=False
    )
    seat_id: Mapped[Optional[int]] = mapped_column(ForeignKey("seats.id"))

    booking: Mapped[Booking] = relationship(back_populates="passengers")
    passenger: Mapped[Passenger] = relationship()
    seat: Mapped[Optional[Seat]] = relationship()


class AncillarySale(Base):
    __tablename__ = "ancillary_sales"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_quantity_positive"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    booking_id: Mapped[int] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("ancillary_products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    price_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    booking: Mapped[Booking] = relationship(back_populates="ancillary_sales")
    product: Mapped[AncillaryProduct] = relationship()


class PriceOfferLog(Base):
    __tablename__ = "price_offer_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    flight_instance_id: Mapped[int] = mapped_column(
        ForeignKey("flight_instances.id"), nullable=False
    )
    fare_code: Mapped[str] = mapped_column(String(10), nullable=False)
    quoted_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    context_rule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("contextual_pricing_rules.id")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
