"""Identity store: accounts, password checks and bearer session tokens.

Creating an identity dispatches ``identity.created``; the profile directory
subscribes to it (see ``usecases.profiles``) and creates the matching profile
inside the same transaction.
"""
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import config, models, policy
from ..changes import stage_change
from ..errors import AuthenticationError, ConflictError, DependencyError, ValidationError
from ..policy import Caller
from ..utils import atomic, dispatch_event
from . import profiles  # noqa: F401  registers the identity.created handler

logger = logging.getLogger(__name__)

IDENTITY_CREATED = "identity.created"
MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)


def now() -> datetime:
    return datetime.now()


# ---------------- PASSWORDS ----------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, stored: str) -> bool:
    # rows with an unrecognised hash format never authenticate
    if not stored or not pwd_context.identify(stored):
        return False
    return pwd_context.verify(password, stored)


def normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError("email is not valid", "email")
    return email


# ---------------- IDENTITIES ----------------

def find_identity(db: Session, email: str) -> Optional[models.Identity]:
    return db.execute(
        select(models.Identity).where(models.Identity.email == email.strip().lower())
    ).scalar_one_or_none()


@atomic
def signup(db: Session, email: str, password: str, full_name: Optional[str] = None) -> models.Identity:
    email = normalize_email(email)
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"password must be at least {MIN_PASSWORD_LENGTH} characters", "password")
    if find_identity(db, email):
        raise ConflictError("email already registered", code="email_already_registered")

    ident = models.Identity(
        id=models.new_id(),
        email=email,
        password_hash=hash_password(password),
        display_name=full_name,
        created_at=now(),
    )
    db.add(ident)
    db.flush()

    dispatch_event(db, IDENTITY_CREATED, {
        "identity_id": ident.id,
        "email": email,
        "full_name": full_name,
    })
    logger.info("[AUTH] identity created %s", ident.id)
    return ident


@atomic
def delete_identity(db: Session, caller: Caller, identity_id: str) -> dict:
    policy.require(caller, "identities", "delete", message="only admins can delete accounts")
    ident = db.get(models.Identity, identity_id)
    if not ident:
        raise DependencyError("identity", identity_id)

    # profile, roles, sessions, owned requests and their log entries go with it
    db.delete(ident)
    stage_change(db, "profiles", "delete", identity_id)
    logger.info("[AUTH] identity %s deleted by %s", identity_id, caller.identity_id)
    return {"ok": True}


# ---------------- SESSIONS ----------------

@atomic
def login(db: Session, email: str, password: str) -> models.AuthSession:
    ident = find_identity(db, email or "")
    if not ident or not verify_password(password or "", ident.password_hash):
        raise AuthenticationError("invalid email or password", code="invalid_credentials")

    issued = now()
    sess = models.AuthSession(
        token=secrets.token_urlsafe(32),
        identity_id=ident.id,
        created_at=issued,
        expires_at=issued + timedelta(hours=config.SESSION_TTL_HOURS),
    )
    db.add(sess)
    return sess


@atomic
def logout(db: Session, token: str) -> dict:
    sess = db.get(models.AuthSession, token)
    if sess:
        db.delete(sess)
    return {"ok": True}


def resolve_caller(db: Session, token: Optional[str]) -> Caller:
    if not token:
        raise AuthenticationError("missing bearer token")
    sess = db.get(models.AuthSession, token)
    if not sess or sess.expires_at <= now():
        raise AuthenticationError("session expired or unknown", code="invalid_session")
    return policy.caller_for(db, sess.identity_id)
