"""FastAPI application exposing quotes, bookings and seat selection."""
from __future__ import annotations

from datetime import date
from io import BytesIO, StringIO
from typing import Any, Dict, List, Literal, Optional

import pandas as pd
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import StreamingResponse
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .booking import create_booking, get_booking, get_booking_by_reference, set_booking_status
from .config import load_settings
from .database import init_db
from .identity import CallerContext, CallerIdentity, resolve_caller
from .models import Booking, BookingStatus, PriceOfferLog
from .pricing import FareQuote, compute_seat_price, quote_base_fare
from .request import AncillaryPurchase, BookingRequest, PassengerDetails
from .results import ErrorCategory, Failure
from .seats import SeatAssignment, SeatMap, assign_seat, get_seat_map, release_seat

FileFormat = Literal["csv", "xlsx"]

HTTP_STATUS: Dict[ErrorCategory, int] = {
    ErrorCategory.INVALID_INPUT: 422,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.BUSINESS_RULE_VIOLATION: 409,
    ErrorCategory.PERSISTENCE_FAILURE: 503,
    ErrorCategory.UNAUTHENTICATED: 401,
    ErrorCategory.UNAUTHORIZED: 403,
}


class PassengerIn(BaseModel):
    first_name: str
    last_name: str
    passport_number: str
    date_of_birth: Optional[date] = None


class AncillaryIn(BaseModel):
    product_id: int
    quantity: int = 1


class BookingIn(BaseModel):
    flight_id: int
    fare_code: str
    passengers: List[PassengerIn] = Field(default_factory=list)
    ancillaries: List[AncillaryIn] = Field(default_factory=list)

    def to_request(self) -> BookingRequest:
        return BookingRequest(
            flight_id=self.flight_id,
            fare_code=self.fare_code,
            passengers=[PassengerDetails(**passenger.model_dump()) for passenger in self.passengers],
            ancillaries=[AncillaryPurchase(**item.model_dump()) for item in self.ancillaries],
        )


class StatusIn(BaseModel):
    status: BookingStatus


class SeatIn(BaseModel):
    seat_id: int


def _money(value) -> Optional[str]:
    if value is None:
        return None
    return f"{value:.2f}"


def _raise_for(failure: Failure) -> None:
    raise HTTPException(
        status_code=HTTP_STATUS[failure.category],
        detail={
            "kind": failure.kind.value,
            "category": failure.category.value,
            "message": failure.message,
            "retryable": failure.retryable,
        },
    )


def _quote_payload(quote: FareQuote) -> Dict[str, Any]:
    return {
        "flight_id": quote.flight_id,
        "fare_code": quote.fare_code,
        "cabin_class": quote.cabin_class.value if quote.cabin_class else None,
        "base_price": _money(quote.base_price),
        "fare_class_multiplier": str(quote.fare_class_multiplier),
        "occupancy_multiplier": str(quote.occupancy_multiplier),
        "price": _money(quote.price),
    }


def _booking_payload(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "reference": booking.reference,
        "status": booking.status.value,
        "flight_id": booking.flight_instance_id,
        "fare_code": booking.fare_code,
        "total_price": _money(booking.total_price),
        "created_at": booking.created_at.isoformat(),
        "passengers": [
            {
                "passenger_id": link.passenger_id,
                "first_name": link.passenger.first_name,
                "last_name": link.passenger.last_name,
                "passport_number": link.passenger.passport_number,
                "seat_id": link.seat_id,
                "seat_number": link.seat.seat_number if link.seat is not None else None,
            }
            for link in booking.passengers
        ],
        "ancillaries": [
            {
                "product_id": sale.product_id,
                "quantity": sale.quantity,
                "unit_price": _money(sale.unit_price),
                "price_paid": _money(sale.price_paid),
            }
            for sale in booking.ancillary_sales
        ],
    }


def _assignment_payload(assignment: SeatAssignment) -> Dict[str, Any]:
    return {
        "booking_id": assignment.booking_id,
        "passenger_id": assignment.passenger_id,
        "flight_id": assignment.flight_id,
        "seat_id": assignment.seat_id,
        "seat_number": assignment.seat_number,
        "changed": assignment.changed,
    }


def _seat_map_payload(seat_map: SeatMap) -> Dict[str, Any]:
    return {
        "flight_id": seat_map.flight_id,
        "available": seat_map.available_count,
        "cabins": {
            cabin.value: [
                {
                    "seat_id": entry.seat_id,
                    "seat_number": entry.seat_number,
                    "is_window": entry.is_window,
                    "is_exit_row": entry.is_exit_row,
                    "available": entry.available,
                    "price": _money(entry.price),
                }
                for entry in entries
            ]
            for cabin, entries in seat_map.cabins.items()
        },
    }


def _price_offers(session_factory: sessionmaker[Session], flight_id: int) -> pd.DataFrame:
    with session_factory() as session:
        offers = session.scalars(
            select(PriceOfferLog)
            .where(PriceOfferLog.flight_instance_id == flight_id)
            .order_by(PriceOfferLog.id)
        ).all()
    data = [
        {
            "Quoted At": offer.created_at,
            "Fare Code": offer.fare_code,
            "Quoted Price": float(offer.quoted_price),
            "Context Rule": offer.context_rule_id,
        }
        for offer in offers
    ]
    return pd.DataFrame(data, columns=["Quoted At", "Fare Code", "Quoted Price", "Context Rule"])


def create_app(session_factory: Optional[sessionmaker[Session]] = None) -> FastAPI:
    """Return an application bound to ``session_factory`` (or the configured database)."""

    if session_factory is None:
        session_factory = init_db(load_settings().db_url)

    app = FastAPI(title="Flight Booking", description="Booking transactions and pricing")

    def current_caller(
        x_caller_subject: Optional[str] = Header(default=None),
        x_caller_roles: str = Header(default=""),
    ) -> CallerContext:
        identity = CallerIdentity.of(x_caller_subject, x_caller_roles.split(","))
        with session_factory() as session:
            result = resolve_caller(session, identity)
        if not result.ok:
            _raise_for(result)
        return result.value

    @app.get("/flights/{flight_id}/fares/{fare_code}")
    def quote_fare(flight_id: int, fare_code: str) -> Dict[str, Any]:
        result = quote_base_fare(session_factory, flight_id, fare_code)
        if not result.ok:
            _raise_for(result)
        return _quote_payload(result.value)

    @app.get("/flights/{flight_id}/seats")
    def seat_map(flight_id: int) -> Dict[str, Any]:
        result = get_seat_map(session_factory, flight_id)
        if not result.ok:
            _raise_for(result)
        return _seat_map_payload(result.value)

    @app.get("/flights/{flight_id}/seats/{seat_id}/price")
    def seat_price(flight_id: int, seat_id: int) -> Dict[str, Any]:
        result = compute_seat_price(session_factory, seat_id, flight_id)
        if not result.ok:
            _raise_for(result)
        return {"flight_id": flight_id, "seat_id": seat_id, "price": _money(result.value)}

    @app.get("/flights/{flight_id}/price-offers.{file_format}")
    def download_price_offers(flight_id: int, file_format: FileFormat) -> StreamingResponse:
        dataframe = _price_offers(session_factory, flight_id)
        filename = f"flight_{flight_id}_price_offers.{file_format}"
        headers = {"Content-Disposition": f"attachment; filename=\"{filename}\""}

        if file_format == "csv":
            buffer = StringIO()
            dataframe.to_csv(buffer, index=False)
            buffer.seek(0)
            return StreamingResponse(
                iter([buffer.getvalue()]), media_type="text/csv", headers=headers
            )

        buffer = BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            dataframe.to_excel(writer, index=False, sheet_name="Price Offers")
        buffer.seek(0)
        return StreamingResponse(
            buffer,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers=headers,
        )

    @app.post("/bookings", status_code=201)
    def post_booking(
        payload: BookingIn, caller: CallerContext = Depends(current_caller)
    ) -> Dict[str, Any]:
        result = create_booking(session_factory, payload.to_request(), caller)
        if not result.ok:
            _raise_for(result)
        return _booking_payload(result.value)

    @app.get("/bookings/by-reference/{reference}")
    def read_booking_by_reference(
        reference: str, caller: CallerContext = Depends(current_caller)
    ) -> Dict[str, Any]:
        result = get_booking_by_reference(session_factory, reference, caller)
        if not result.ok:
            _raise_for(result)
        return _booking_payload(result.value)

    @app.get("/bookings/{booking_id}")
    def read_booking(
        booking_id: int, caller: CallerContext = Depends(current_caller)
    ) -> Dict[str, Any]:
        result = get_booking(session_factory, booking_id, caller)
        if not result.ok:
            _raise_for(result)
        return _booking_payload(result.value)

    @app.post("/bookings/{booking_id}/status")
    def change_status(
        booking_id: int, payload: StatusIn, caller: CallerContext = Depends(current_caller)
    ) -> Dict[str, Any]:
        result = set_booking_status(session_factory, booking_id, payload.status, caller=caller)
        if not result.ok:
            _raise_for(result)
        return _booking_payload(result.value)

    @app.put("/bookings/{booking_id}/passengers/{passenger_id}/seat")
    def put_seat(
        booking_id: int,
        passenger_id: int,
        payload: SeatIn,
        caller: CallerContext = Depends(current_caller),
    ) -> Dict[str, Any]:
        result = assign_seat(session_factory, caller, booking_id, passenger_id, payload.seat_id)
        if not result.ok:
            _raise_for(result)
        return _assignment_payload(result.value)

    @app.delete("/bookings/{booking_id}/passengers/{passenger_id}/seat")
    def delete_seat(
        booking_id: int, passenger_id: int, caller: CallerContext = Depends(current_caller)
    ) -> Dict[str, Any]:
        result = release_seat(session_factory, caller, booking_id, passenger_id)
        if not result.ok:
            _raise_for(result)
        return _assignment_payload(result.value)

    logger.debug("Web application created")
    return app


__all__ = ["HTTP_STATUS", "create_app"]
