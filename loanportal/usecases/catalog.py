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
from ..schemas import AssetCreate, AssetPatch
from ..utils import atomic

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now()


def _required_text(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} is required", field)
    return value


def _open_loan(db: Session, asset_id: str) -> Optional[models.BorrowingRequest]:
    return db.execute(
        select(models.BorrowingRequest).where(
            models.BorrowingRequest.asset_id == asset_id,
            models.BorrowingRequest.status == "approved",
            models.BorrowingRequest.returned_at.is_(None),
        ).limit(1)
    ).scalar_one_or_none()


def list_assets(
    db: Session,
    search: Optional[str] = None,
    status: Optional[str] = None,
    kind: Optional[str] = None,
    limit: int = 500,
    offset: int = 0,
):
    q = select(models.Asset)
    if search:
        s = f"%{search.strip().lower()}%"
        q = q.where(or_(models.Asset.name.ilike(s), models.Asset.location.ilike(s)))
    if status:
        q = q.where(models.Asset.status == status)
    if kind:
        q = q.where(models.Asset.kind == kind)
    q = q.order_by(models.Asset.name.asc()).limit(limit).offset(offset)
    return db.execute(q).scalars().all()


def get_asset(db: Session, asset_id: str) -> models.Asset:
    a = db.get(models.Asset, asset_id)
    if not a:
        raise DependencyError("asset", asset_id)
    return a


@atomic
def create_asset(db: Session, caller: Caller, body: AssetCreate) -> models.Asset:
    policy.require(caller, "items", "insert", message="only admin or staff can manage assets")
    a = models.Asset(
        id=models.new_id(),
        name=_required_text(body.name, "name"),
        kind=body.kind,
        location=_required_text(body.location, "location"),
        status="available",
        condition_notes=body.condition_notes,
        created_at=utcnow(),
        updated_at=utcnow(),
    )
    db.add(a)
    stage_change(db, "items", "insert", a.id)
    return a


@atomic
def patch_asset(db: Session, caller: Caller, asset_id: str, body: AssetPatch) -> models.Asset:
    policy.require(caller, "items", "update", message="only admin or staff can manage assets")
    a = get_asset(db, asset_id)
    data = body.model_dump(exclude_unset=True)

    for field in ("name", "location", "kind"):
        if field in data:
            data[field] = _required_text(data[field], field)

    if "status" in data:
        if data["status"] is None:
            raise ValidationError("status cannot be empty", "status")
        # while a loan is out, status belongs to the borrowing workflow
        if data["status"] != a.status and _open_loan(db, asset_id):
            raise ConflictError(
                "asset status is controlled by an active loan",
                code="asset_under_active_loan",
                current_state={"asset_status": a.status},
            )

    for k, v in data.items():
        setattr(a, k, v)
    a.updated_at = utcnow()

    stage_change(db, "items", "update", asset_id)
    return a


@atomic
def delete_asset(db: Session, caller: Caller, asset_id: str) -> dict:
    policy.require(caller, "items", "delete", message="only admin or staff can manage assets")
    a = get_asset(db, asset_id)

    active = db.execute(
        select(models.BorrowingRequest.id).where(
            models.BorrowingRequest.asset_id == asset_id,
            models.BorrowingRequest.status.in_(models.ACTIVE_REQUEST_STATUSES),
        ).limit(1)
    ).scalar_one_or_none()
    if active:
        raise ConflictError("asset has pending or approved requests", code="asset_has_active_requests")

    db.delete(a)
    stage_change(db, "items", "delete", asset_id)
    logger.info("[CATALOG] asset %s deleted by %s", asset_id, caller.identity_id)
    return {"ok": True}
