"""Database helpers and the transactional unit of work."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Tuple

from loguru import logger
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DEFAULT_DB_URL, load_settings
from .models import Base
from .results import Failure, FailureKind, Result, Success

Translator = Callable[[SQLAlchemyError], Optional[Failure]]

def _serialize_sqlite_writers(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write, which lets two readers race
    # to upgrade their locks. Take the write lock when the transaction opens.

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(connection):  # pragma: no cover - driver hook
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def create_session_factory(
    db_url: str = DEFAULT_DB_URL,
    *,
    echo: bool = False,
    connect_args: Dict[str, object] | None = None,
) -> Tuple[Engine, sessionmaker[Session]]:
    """Return an engine/session factory pair configured for SQLite by default."""

    if db_url.startswith("sqlite"):
        final_connect_args: Dict[str, object] = {
            "check_same_thread": False,
            "timeout": load_settings().sqlite_timeout,
        }
        if connect_args:
            final_connect_args.update(connect_args)
    else:
        final_connect_args = connect_args or {}

    if db_url.endswith(":memory:"):
        engine = create_engine(
            db_url,
            echo=echo,
            connect_args=final_connect_args,
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            db_url,
            echo=echo,
            connect_args=final_connect_args,
        )
    if engine.dialect.name == "sqlite":
        _serialize_sqlite_writers(engine)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    return engine, session_factory


def init_db(db_url: str = DEFAULT_DB_URL, *, echo: bool = False) -> sessionmaker[Session]:
    """Create all tables and return a session factory."""

    engine, session_factory = create_session_factory(db_url, echo=echo)
    Base.metadata.create_all(engine)
    logger.bind(db_url=engine.url.render_as_string(hide_password=True)).info("Schema ready")
    return session_factory


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class UnitOfWork:
    """One atomic write phase: begin, then exactly one of commit or rollback.

    ``commit`` reports store errors as a :class:`Failure` instead of raising,
    so callers can return it directly. Leaving the ``with`` block without a
    commit rolls everything back.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._session: Optional[Session] = None
        self._finished = False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("unit of work has not begun")
        return self._session

    def begin(self) -> Session:
        self._session = self._session_factory()
        self._session.begin()
        self._finished = False
        return self._session

    def flush(self, translate: Optional[Translator] = None) -> Result[None]:
        """Push pending writes so constraint violations surface inside the unit."""

        try:
            self.session.flush()
        except SQLAlchemyError as exc:
            self.rollback()
            return _translated(exc, translate)
        return Success(None)

    def commit(self, translate: Optional[Translator] = None) -> Result[None]:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.rollback()
            return _translated(exc, translate)
        self._finished = True
        return Success(None)

    def rollback(self) -> None:
        if self._session is not None and not self._finished:
            self._session.rollback()
        self._finished = True

    def close(self) -> None:
        if self._session is not None:
            self.rollback()
            self._session.close()
            self._session = None

    def __enter__(self) -> "UnitOfWork":
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def is_unique_violation(exc: SQLAlchemyError, constraint: str) -> bool:
    """Return True when ``exc`` was raised by the named uniqueness constraint."""

    if not isinstance(exc, IntegrityError):
        return False
    text = str(exc.orig).lower()
    if constraint.lower() in text:
        return True
    # SQLite names the columns rather than the constraint.
    return "unique constraint failed" in text and _SQLITE_COLUMNS.get(constraint, "") in text


_SQLITE_COLUMNS = {
    "uq_flight_seat": "booking_passengers.flight_instance_id, booking_passengers.seat_id",
    "uq_booking_reference": "bookings.reference",
    "uq_account_passport": "passengers.account_id, passengers.passport_number",
}


def store_failure(exc: SQLAlchemyError) -> Failure:
    logger.bind(error=type(exc).__name__).error("Store operation failed: {}", exc)
    return Failure.of(FailureKind.PERSISTENCE_FAILURE, "The booking store rejected the operation.")


def _translated(exc: SQLAlchemyError, translate: Optional[Translator]) -> Failure:
    if translate is not None:
        failure = translate(exc)
        if failure is not None:
            return failure
    return store_failure(exc)


__all__ = [
    "UnitOfWork",
    "create_session_factory",
    "init_db",
    "is_unique_violation",
    "session_scope",
    "store_failure",
]
