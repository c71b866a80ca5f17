"""Command line interface for the booking engine."""
from __future__ import annotations

import argparse
import sys
from typing import Iterable, List

from tabulate import tabulate

from .config import load_settings
from .database import init_db
from .dataset import generate_sample_data
from .logging_setup import configure_logging
from .pricing import FareQuote, quote_base_fare
from .seats import SeatMap, get_seat_map


def _render_quote(quote: FareQuote) -> str:
    rows = [
        ["Fare code", quote.fare_code],
        ["Cabin class", quote.cabin_class.value if quote.cabin_class else "-"],
        ["Base price", f"{quote.base_price:.2f}"],
        ["Fare class multiplier", f"{quote.fare_class_multiplier}"],
        ["Occupancy multiplier", f"{quote.occupancy_multiplier}"],
        ["Price", f"{quote.price:.2f}"],
    ]
    return tabulate(rows, tablefmt="github")


def _render_seat_map(seat_map: SeatMap) -> str:
    rows: List[List[object]] = []
    for cabin, entries in seat_map.cabins.items():
        for entry in entries:
            rows.append(
                [
                    entry.seat_number,
                    cabin.value,
                    "yes" if entry.is_window else "",
                    "yes" if entry.is_exit_row else "",
                    "free" if entry.available else "taken",
                    f"{entry.price:.2f}" if entry.price is not None else "-",
                ]
            )
    headers = ["Seat", "Cabin", "Window", "Exit row", "Status", "Price"]
    return tabulate(rows, headers=headers, tablefmt="github")


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Flight booking transaction and pricing engine.")
    parser.add_argument(
        "--db-url",
        default=None,
        help="SQLAlchemy database URL (default: $FLIGHT_BOOKING_DB_URL or a local SQLite file).",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: $FLIGHT_BOOKING_LOG_LEVEL).")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create the database schema.")

    seed = commands.add_parser("seed", help="Create the schema and load deterministic sample data.")
    seed.add_argument("--flights", type=int, default=6)
    seed.add_argument("--accounts", type=int, default=20)
    seed.add_argument("--bookings", type=int, default=40)

    quote = commands.add_parser("quote", help="Quote the base fare for one passenger.")
    quote.add_argument("flight", type=int, help="Flight instance id.")
    quote.add_argument("fare", help="Fare basis code.")

    seat_map = commands.add_parser("seat-map", help="Show the seat map of a flight.")
    seat_map.add_argument("flight", type=int, help="Flight instance id.")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    settings = load_settings()
    configure_logging(args.log_level or settings.log_level)
    session_factory = init_db(args.db_url or settings.db_url)

    if args.command == "init-db":
        print("Database schema ready.")
        return 0

    if args.command == "seed":
        counts = generate_sample_data(
            session_factory,
            flights=args.flights,
            accounts=args.accounts,
            bookings=args.bookings,
        )
        print(tabulate(sorted(counts.items()), headers=["Entity", "Count"], tablefmt="github"))
        return 0

    if args.command == "quote":
        result = quote_base_fare(session_factory, args.flight, args.fare)
        if not result.ok:
            print(f"Error: {result.message}", file=sys.stderr)
            return 1
        print(f"Fare quote for flight {args.flight}")
        print(_render_quote(result.value))
        return 0

    result = get_seat_map(session_factory, args.flight)
    if not result.ok:
        print(f"Error: {result.message}", file=sys.stderr)
        return 1
    print(f"Seat map for flight {args.flight}: {result.value.available_count} seats free")
    print(_render_seat_map(result.value))
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
