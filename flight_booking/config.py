"""Environment driven settings for the booking engine."""
from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_DB_URL = "sqlite+pysqlite:///flight_booking.db"


@dataclass(frozen=True)
class Settings:
    db_url: str
    log_level: str
    cancellation_window_hours: float
    sqlite_timeout: float


def load_settings() -> Settings:
    """Read ``FLIGHT_BOOKING_*`` variables from the environment."""

    return Settings(
        db_url=os.environ.get("FLIGHT_BOOKING_DB_URL", DEFAULT_DB_URL),
        log_level=os.environ.get("FLIGHT_BOOKING_LOG_LEVEL", "INFO").upper(),
        cancellation_window_hours=float(
            os.environ.get("FLIGHT_BOOKING_CANCELLATION_WINDOW_HOURS", 2)
        ),
        sqlite_timeout=float(os.environ.get("FLIGHT_BOOKING_SQLITE_TIMEOUT", 30)),
    )


__all__ = ["DEFAULT_DB_URL", "Settings", "load_settings"]
