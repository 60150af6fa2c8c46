"""Row-level authorization, evaluated in Python before a use case touches storage.

Each table maps an operation to a rule ``(caller, row) -> bool``. Use cases call
``require`` before mutating and ``request_read_filter`` before row-filtered reads.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .errors import AuthorizationError

Rule = Callable[["Caller", Any], bool]


@dataclass(frozen=True)
class Caller:
    identity_id: str
    roles: frozenset = frozenset()

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def is_staff(self) -> bool:
        """admin or staff; both may run the approval workflow"""
        return bool(self.roles & set(models.STAFF_ROLES))


def has_role(db: Session, identity_id: str, role: str) -> bool:
    # single lookup on the (user_id, role) unique index; no side effects
    found = db.execute(
        select(models.RoleMembership.id).where(
            models.RoleMembership.user_id == identity_id,
            models.RoleMembership.role == role,
        ).limit(1)
    ).scalar_one_or_none()
    return found is not None


def roles_of(db: Session, identity_id: str) -> frozenset:
    rows = db.execute(
        select(models.RoleMembership.role).where(models.RoleMembership.user_id == identity_id)
    ).scalars().all()
    return frozenset(rows)


def caller_for(db: Session, identity_id: str) -> Caller:
    return Caller(identity_id=identity_id, roles=roles_of(db, identity_id))


def _field(row: Any, name: str) -> Any:
    if isinstance(row, dict):
        return row.get(name)
    return getattr(row, name, None)


def _public(caller: Caller, row: Any) -> bool:
    return True


def _never(caller: Caller, row: Any) -> bool:
    return False


def _admin(caller: Caller, row: Any) -> bool:
    return caller.is_admin


def _staff(caller: Caller, row: Any) -> bool:
    return caller.is_staff


def _self_or_admin(caller: Caller, row: Any) -> bool:
    return caller.is_admin or _field(row, "id") == caller.identity_id


def _is_self(caller: Caller, row: Any) -> bool:
    return _field(row, "id") == caller.identity_id


def _borrower_or_staff(caller: Caller, row: Any) -> bool:
    return caller.is_staff or _field(row, "borrower_id") == caller.identity_id


def _is_borrower(caller: Caller, row: Any) -> bool:
    return _field(row, "borrower_id") == caller.identity_id


RULES: Dict[str, Dict[str, Rule]] = {
    "identities": {"read": _self_or_admin, "delete": _admin},
    "profiles": {"read": _public, "insert": _is_self, "update": _self_or_admin, "delete": _never},
    "user_roles": {"read": _public, "insert": _admin, "delete": _admin},
    "items": {"read": _public, "insert": _staff, "update": _staff, "delete": _staff},
    "borrowing_requests": {
        "read": _borrower_or_staff,
        "insert": _is_borrower,
        "update": _staff,
        "delete": _never,
    },
    "activity_logs": {"read": _public, "insert": _public, "update": _never, "delete": _never},
}


def can(caller: Caller, table: str, op: str, row: Any = None) -> bool:
    rule = RULES.get(table, {}).get(op, _never)
    return rule(caller, row)


def require(caller: Caller, table: str, op: str, row: Any = None, message: Optional[str] = None) -> None:
    if not can(caller, table, op, row):
        raise AuthorizationError(message or f"not allowed to {op} {table}", code=f"{table}_{op}_forbidden")


def request_read_filter(caller: Caller):
    """WHERE clause limiting borrowing_requests to rows the caller may read, or None for all rows."""
    if caller.is_staff:
        return None
    return models.BorrowingRequest.borrower_id == caller.identity_id
