"""Inbound booking request types and their shape validation."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from .results import Failure, FailureKind


@dataclass(frozen=True)
class PassengerDetails:
    first_name: str
    last_name: str
    passport_number: str
    date_of_birth: Optional[date] = None


@dataclass(frozen=True)
class AncillaryPurchase:
    product_id: int
    quantity: int = 1


@dataclass(frozen=True)
class BookingRequest:
    flight_id: int
    fare_code: str
    passengers: List[PassengerDetails] = field(default_factory=list)
    ancillaries: List[AncillaryPurchase] = field(default_factory=list)

    @property
    def passenger_count(self) -> int:
        return len(self.passengers)

    def validate(self) -> Optional[Failure]:
        """Return the first malformed field, or ``None`` when the request is usable."""

        if not self.fare_code or not self.fare_code.strip():
            return Failure.of(FailureKind.INVALID_INPUT, "A fare code is required.")
        if not self.passengers:
            return Failure.of(FailureKind.INVALID_INPUT, "Cannot book for zero passengers.")
        passports = set()
        for index, passenger in enumerate(self.passengers):
            if not passenger.first_name.strip() or not passenger.last_name.strip():
                return Failure.of(
                    FailureKind.INVALID_INPUT, f"Passenger {index + 1} is missing a name."
                )
            passport = passenger.passport_number.strip().upper()
            if not passport:
                return Failure.of(
                    FailureKind.INVALID_INPUT, f"Passenger {index + 1} is missing a passport number."
                )
            if passport in passports:
                return Failure.of(
                    FailureKind.INVALID_INPUT, f"Passport {passport} appears twice in the request."
                )
            passports.add(passport)
        for purchase in self.ancillaries:
            if purchase.quantity <= 0:
                return Failure.of(
                    FailureKind.INVALID_INPUT,
                    f"Quantity for ancillary product {purchase.product_id} must be positive.",
                )
        return None


__all__ = ["AncillaryPurchase", "BookingRequest", "PassengerDetails"]
