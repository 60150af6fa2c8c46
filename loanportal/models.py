import uuid
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utcnow():
    return datetime.now()


def new_id() -> str:
    return str(uuid.uuid4())


ROLES = ("admin", "staff", "student")
STAFF_ROLES = ("admin", "staff")
DEPARTMENTS = ("trkj", "ti", "trmm")
ASSET_KINDS = ("key", "projector")
ASSET_STATUSES = ("available", "loaned", "overdue", "damaged")
REQUEST_STATUSES = ("pending", "approved", "rejected", "returned")
ACTIVE_REQUEST_STATUSES = ("pending", "approved")
LOG_ACTIONS = ("request", "approve", "reject", "borrow", "return", "overdue")


class Identity(Base):
    __tablename__ = "identities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    profile = relationship(
        "Profile", back_populates="identity", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    token: Mapped[str] = mapped_column(String, primary_key=True)
    identity_id: Mapped[str] = mapped_column(ForeignKey("identities.id", ondelete="CASCADE"), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime)


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(ForeignKey("identities.id", ondelete="CASCADE"), primary_key=True)
    full_name: Mapped[str] = mapped_column(String)
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    id_number: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)  # NIM / NIP
    department: Mapped[str | None] = mapped_column(String, nullable=True)  # trkj|ti|trmm
    class_label: Mapped[str | None] = mapped_column(String, nullable=True)
    cohort_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    identity = relationship("Identity", back_populates="profile")
    roles = relationship(
        "RoleMembership", back_populates="profile",
        cascade="all, delete-orphan", passive_deletes=True,
    )


class RoleMembership(Base):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String, index=True)  # admin|staff|student
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    profile = relationship("Profile", back_populates="roles")


class Asset(Base):
    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String)
    kind: Mapped[str] = mapped_column(String, index=True)  # key|projector
    location: Mapped[str] = mapped_column(String)
    status: Mapped[str] = mapped_column(String, default="available", index=True)
    condition_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class BorrowingRequest(Base):
    __tablename__ = "borrowing_requests"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    asset_id: Mapped[str] = mapped_column(ForeignKey("items.id", ondelete="CASCADE"), index=True)
    borrower_id: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    purpose: Mapped[str] = mapped_column(Text)
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    start_time: Mapped[datetime] = mapped_column(DateTime)
    end_time: Mapped[datetime] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)

    approver_id: Mapped[str | None] = mapped_column(
        ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    return_condition: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    asset = relationship("Asset")
    borrower = relationship("Profile", foreign_keys=[borrower_id])


class ActivityLog(Base):
    """Append-only audit trail of ledger transitions."""

    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    request_id: Mapped[str] = mapped_column(
        ForeignKey("borrowing_requests.id", ondelete="CASCADE"), index=True
    )
    action: Mapped[str] = mapped_column(String, index=True)
    performed_by: Mapped[str] = mapped_column(ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
