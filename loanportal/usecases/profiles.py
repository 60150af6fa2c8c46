from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, or_
from sqlalchemy.orm import Session

from .. import models, policy
from ..changes import stage_change
from ..errors import ConflictError, DependencyError, ValidationError
from ..policy import Caller
from ..schemas import ROLE_ALIASES, ProfilePatch
from ..utils import atomic, on_event

logger = logging.getLogger(__name__)

DEFAULT_FULL_NAME = "User"


def utcnow() -> datetime:
    return datetime.now()


# ---------------- IDENTITY EVENTS ----------------

@on_event("identity.created")
def create_profile_for_identity(db: Session, payload: dict) -> None:
    """Every new identity gets a matching profile with a default name and its email."""
    identity_id = payload["identity_id"]
    if db.get(models.Profile, identity_id):
        return

    email = payload["email"]
    taken = db.execute(select(models.Profile.id).where(models.Profile.email == email)).scalar_one_or_none()
    if taken:
        raise ConflictError("email already used by another profile", code="email_already_in_use")

    full_name = (payload.get("full_name") or "").strip() or DEFAULT_FULL_NAME
    db.add(models.Profile(
        id=identity_id,
        full_name=full_name,
        email=email,
        created_at=utcnow(),
        updated_at=utcnow(),
    ))
    stage_change(db, "profiles", "insert", identity_id)


# ---------------- PROFILES ----------------

def get_profile(db: Session, profile_id: str) -> models.Profile:
    p = db.get(models.Profile, profile_id)
    if not p:
        raise DependencyError("profile", profile_id)
    return p


def list_profiles(
    db: Session,
    search: Optional[str] = None,
    department: Optional[str] = None,
    role: Optional[str] = None,
    limit: int = 200,
    offset: int = 0,
):
    q = select(models.Profile)
    if search:
        s = f"%{search.strip().lower()}%"
        q = q.where(or_(
            models.Profile.full_name.ilike(s),
            models.Profile.email.ilike(s),
            models.Profile.id_number.ilike(s),
        ))
    if department:
        q = q.where(models.Profile.department == department)
    if role:
        q = q.where(models.Profile.id.in_(
            select(models.RoleMembership.user_id).where(models.RoleMembership.role == role)
        ))
    q = q.order_by(models.Profile.full_name.asc()).limit(limit).offset(offset)
    return db.execute(q).scalars().all()


@atomic
def patch_profile(db: Session, caller: Caller, profile_id: str, body: ProfilePatch) -> models.Profile:
    p = get_profile(db, profile_id)
    policy.require(caller, "profiles", "update", p, message="profiles can only be edited by their owner or an admin")
    data = body.model_dump(exclude_unset=True)

    if "full_name" in data:
        name = (data["full_name"] or "").strip()
        if not name:
            raise ValidationError("full_name cannot be empty", "full_name")
        data["full_name"] = name

    if "email" in data:
        email = (data["email"] or "").strip().lower()
        if "@" not in email:
            raise ValidationError("email is not valid", "email")
        ex = db.execute(select(models.Profile).where(models.Profile.email == email)).scalar_one_or_none()
        if ex and ex.id != profile_id:
            raise ConflictError("email already used by another profile", code="email_already_in_use")
        data["email"] = email

    if data.get("id_number"):
        ex = db.execute(
            select(models.Profile).where(models.Profile.id_number == data["id_number"])
        ).scalar_one_or_none()
        if ex and ex.id != profile_id:
            raise ConflictError("id_number already used by another profile", code="id_number_already_in_use")

    for k, v in data.items():
        setattr(p, k, v)
    p.updated_at = utcnow()

    stage_change(db, "profiles", "update", profile_id)
    return p


# ---------------- ROLES ----------------

def list_roles(db: Session, user_id: Optional[str] = None):
    q = select(models.RoleMembership)
    if user_id:
        q = q.where(models.RoleMembership.user_id == user_id)
    q = q.order_by(models.RoleMembership.user_id.asc(), models.RoleMembership.role.asc())
    return db.execute(q).scalars().all()


@atomic
def grant_role(db: Session, caller: Caller, user_id: str, role: str) -> models.RoleMembership:
    policy.require(caller, "user_roles", "insert", message="only admins can manage roles")
    if role not in models.ROLES:
        raise ValidationError(f"unknown role '{role}'", "role")
    get_profile(db, user_id)
    if policy.has_role(db, user_id, role):
        raise ConflictError(f"user already has role '{role}'", code="role_already_granted")

    m = models.RoleMembership(id=models.new_id(), user_id=user_id, role=role, created_at=utcnow())
    db.add(m)
    stage_change(db, "user_roles", "insert", m.id)
    logger.info("[ROLES] granted %s to %s by %s", role, user_id, caller.identity_id)
    return m


@atomic
def revoke_role(db: Session, caller: Caller, user_id: str, role: str) -> dict:
    policy.require(caller, "user_roles", "delete", message="only admins can manage roles")
    role = ROLE_ALIASES.get(role.strip().lower(), role.strip().lower())
    m = db.execute(
        select(models.RoleMembership).where(
            models.RoleMembership.user_id == user_id,
            models.RoleMembership.role == role,
        )
    ).scalar_one_or_none()
    if not m:
        raise DependencyError("role_membership", f"{user_id}:{role}")

    db.delete(m)
    stage_change(db, "user_roles", "delete", m.id)
    logger.info("[ROLES] revoked %s from %s by %s", role, user_id, caller.identity_id)
    return {"ok": True}
