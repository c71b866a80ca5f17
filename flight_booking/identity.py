"""Caller resolution, performed once per request and passed down explicitly."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import Account
from .results import Failure, FailureKind, Result, Success

ELEVATED_ROLES: FrozenSet[str] = frozenset({"Admin", "Supervisor", "SuperAdmin"})


@dataclass(frozen=True)
class CallerIdentity:
    """Pre-validated identity handed in by the authentication layer."""

    subject: Optional[str]
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, subject: Optional[str], roles: Iterable[str] = ()) -> "CallerIdentity":
        return cls(subject=subject, roles=frozenset(role.strip() for role in roles if role.strip()))


@dataclass(frozen=True)
class CallerContext:
    account_id: int
    subject: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_elevated(self) -> bool:
        return bool(self.roles & ELEVATED_ROLES)

    def can_access(self, owner_account_id: int) -> bool:
        return self.account_id == owner_account_id or self.is_elevated


def resolve_caller(session: Session, identity: Optional[CallerIdentity]) -> Result[CallerContext]:
    if identity is None or not identity.subject:
        return Failure.of(FailureKind.UNAUTHENTICATED, "User is not authenticated.")
    account_id = session.scalar(select(Account.id).where(Account.subject == identity.subject))
    if account_id is None:
        logger.bind(subject=identity.subject).warning("Caller does not map to an account")
        return Failure.of(FailureKind.UNAUTHENTICATED, "Customer profile not found for the current user.")
    return Success(CallerContext(account_id=account_id, subject=identity.subject, roles=identity.roles))


def authorize(caller: CallerContext, owner_account_id: int) -> Optional[Failure]:
    """Return a failure when ``caller`` may not act on a resource owned by ``owner_account_id``."""

    if caller.can_access(owner_account_id):
        return None
    logger.bind(account_id=caller.account_id, owner=owner_account_id).warning("Access denied")
    return Failure.of(FailureKind.UNAUTHORIZED, "Access denied to this booking.")


__all__ = [
    "ELEVATED_ROLES",
    "CallerContext",
    "CallerIdentity",
    "authorize",
    "resolve_caller",
]
