from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field


# ---------------- ENUMS ----------------
# Inputs also accept the Indonesian spellings found in existing school data.

ROLE_ALIASES = {"guru": "staff", "siswa": "student"}
ASSET_STATUS_ALIASES = {"tersedia": "available", "dipinjam": "loaned", "rusak": "damaged"}
ASSET_KIND_ALIASES = {"kunci": "key", "infokus": "projector"}


def _normalize(aliases: dict):
    def norm(v):
        if isinstance(v, str):
            v = v.strip().lower()
            return aliases.get(v, v)
        return v
    return norm


RoleName = Annotated[Literal["admin", "staff", "student"], BeforeValidator(_normalize(ROLE_ALIASES))]
AssetStatus = Annotated[
    Literal["available", "loaned", "overdue", "damaged"],
    BeforeValidator(_normalize(ASSET_STATUS_ALIASES)),
]
AssetKind = Annotated[Literal["key", "projector"], BeforeValidator(_normalize(ASSET_KIND_ALIASES))]
Department = Annotated[Literal["trkj", "ti", "trmm"], BeforeValidator(_normalize({}))]
RequestStatus = Literal["pending", "approved", "rejected", "returned"]
LogAction = Literal["request", "approve", "reject", "borrow", "return", "overdue"]


# ---------------- AUTH ----------------

class SignupReq(BaseModel):
    email: str
    password: str
    full_name: Optional[str] = None


class LoginReq(BaseModel):
    email: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    identity_id: str
    expires_at: datetime


class IdentityOut(BaseModel):
    id: str
    email: str
    created_at: datetime

    class Config:
        from_attributes = True


# ---------------- PROFILES / ROLES ----------------

class ProfileOut(BaseModel):
    id: str
    full_name: str
    email: str
    id_number: Optional[str] = None
    department: Optional[str] = None
    class_label: Optional[str] = None
    cohort_year: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProfilePatch(BaseModel):
    full_name: Optional[str] = None
    email: Optional[str] = None
    id_number: Optional[str] = None
    department: Optional[Department] = None
    class_label: Optional[str] = None
    cohort_year: Optional[int] = Field(default=None, ge=1900, le=2200)


class MeOut(BaseModel):
    identity_id: str
    email: str
    roles: List[str]
    profile: Optional[ProfileOut] = None


class RoleGrantReq(BaseModel):
    user_id: str
    role: RoleName


class RoleOut(BaseModel):
    id: str
    user_id: str
    role: str
    created_at: datetime

    class Config:
        from_attributes = True


# ---------------- ASSETS ----------------

class AssetCreate(BaseModel):
    name: str
    kind: AssetKind
    location: str
    condition_notes: Optional[str] = None


class AssetPatch(BaseModel):
    name: Optional[str] = None
    kind: Optional[AssetKind] = None
    location: Optional[str] = None
    status: Optional[AssetStatus] = None
    condition_notes: Optional[str] = None


class AssetOut(BaseModel):
    id: str
    name: str
    kind: str
    location: str
    status: str
    condition_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ---------------- BORROWING REQUESTS ----------------

class RequestCreate(BaseModel):
    asset_id: str
    purpose: str
    start_time: datetime
    end_time: datetime
    # must be the caller when given; kept so a mismatch is refused rather than ignored
    borrower_id: Optional[str] = None


class DecisionReq(BaseModel):
    notes: Optional[str] = None


class ReturnReq(BaseModel):
    return_condition: str = ""
    damaged: bool = False


class RequestOut(BaseModel):
    id: str
    asset_id: str
    borrower_id: str
    purpose: str
    requested_at: datetime
    start_time: datetime
    end_time: datetime
    status: RequestStatus
    approver_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    returned_at: Optional[datetime] = None
    return_condition: Optional[str] = None
    is_overdue: bool = False
    asset_name: Optional[str] = None
    borrower_name: Optional[str] = None


class SweepOut(BaseModel):
    checked: int
    assets_marked_overdue: int
    entries_logged: int


# ---------------- ACTIVITY ----------------

class ActivityOut(BaseModel):
    id: str
    request_id: str
    action: LogAction
    performed_by: str
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# ---------------- REPORTS ----------------

class SummaryOut(BaseModel):
    total_requests: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    returned: int = 0
    active_loans: int = 0
    returned_items: int = 0
    overdue: int = 0
    approval_rate: int = 0
    rejection_rate: int = 0


class AssetLoanStat(BaseModel):
    asset_id: str
    name: str
    kind: str
    status: str
    total_loans: int


class DepartmentStat(BaseModel):
    department: str
    total_requests: int
    approved_requests: int
    approval_rate: int


class ActivityFeedItem(BaseModel):
    request_id: str
    borrower_name: str
    id_number: str
    department: str
    asset_name: str
    purpose: str
    status: RequestStatus
    requested_at: datetime
    start_time: datetime
    end_time: datetime


class ActivityFeedPage(BaseModel):
    items: List[ActivityFeedItem]
    total: int
    limit: int
    offset: int


class DashboardOut(BaseModel):
    total_assets: int = 0
    available_assets: int = 0
    loaned_assets: int = 0
    overdue_assets: int = 0
    damaged_assets: int = 0
    pending_requests: int = 0
    my_active_requests: int = 0
    recent_requests: List[RequestOut] = []
