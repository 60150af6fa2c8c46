"""Borrowing request ledger.

State machine::

    pending -> approved -> returned
    pending -> rejected

Every transition is one transaction: the guarded request update, the asset
status change and the activity entry commit together or not at all. Guards are
``UPDATE ... WHERE status = <expected>`` so two staff members racing on the same
request (or the same asset) cannot both win.

"Overdue" is never stored on the request. ``is_overdue`` / ``overdue_clause``
are the only definitions; listings, reports, the dashboard and the sweep all
use them.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, select, update
from sqlalchemy.orm import Session

from .. import models, policy
from ..changes import stage_change
from ..errors import ConflictError, DependencyError, ValidationError
from ..policy import Caller
from ..utils import atomic
from .activity import append_entry

logger = logging.getLogger(__name__)

R = models.BorrowingRequest


def now() -> datetime:
    return datetime.now()


def as_local_naive(dt: datetime) -> datetime:
    # storage is naive local time; aware inputs are converted, naive ones kept as given
    if dt.tzinfo is not None:
        return dt.astimezone().replace(tzinfo=None)
    return dt


# ---------------- OVERDUE ----------------

def is_overdue(req: models.BorrowingRequest, at: Optional[datetime] = None) -> bool:
    at = at or now()
    return req.status == "approved" and req.returned_at is None and at > req.end_time


def overdue_clause(at: datetime):
    return and_(R.status == "approved", R.returned_at.is_(None), R.end_time < at)


# ---------------- READS ----------------

def request_to_dict(
    req: models.BorrowingRequest,
    at: Optional[datetime] = None,
    asset_name: Optional[str] = None,
    borrower_name: Optional[str] = None,
) -> dict:
    return {
        "id": req.id,
        "asset_id": req.asset_id,
        "borrower_id": req.borrower_id,
        "purpose": req.purpose,
        "requested_at": req.requested_at,
        "start_time": req.start_time,
        "end_time": req.end_time,
        "status": req.status,
        "approver_id": req.approver_id,
        "approved_at": req.approved_at,
        "approval_notes": req.approval_notes,
        "returned_at": req.returned_at,
        "return_condition": req.return_condition,
        "is_overdue": is_overdue(req, at),
        "asset_name": asset_name,
        "borrower_name": borrower_name,
    }


def get_request(db: Session, caller: Caller, request_id: str) -> models.BorrowingRequest:
    req = db.get(R, request_id)
    # someone else's request looks exactly like a missing one
    if not req or not policy.can(caller, "borrowing_requests", "read", req):
        raise DependencyError("request", request_id)
    return req


def list_requests(
    db: Session,
    caller: Caller,
    status: Optional[str] = None,
    asset_id: Optional[str] = None,
    borrower_id: Optional[str] = None,
    overdue_only: bool = False,
    limit: int = 200,
    offset: int = 0,
    at: Optional[datetime] = None,
) -> list[dict]:
    at = at or now()
    q = (
        select(R, models.Asset.name, models.Profile.full_name)
        .join(models.Asset, models.Asset.id == R.asset_id)
        .join(models.Profile, models.Profile.id == R.borrower_id)
    )
    row_filter = policy.request_read_filter(caller)
    if row_filter is not None:
        q = q.where(row_filter)
    if status:
        q = q.where(R.status == status)
    if asset_id:
        q = q.where(R.asset_id == asset_id)
    if borrower_id:
        q = q.where(R.borrower_id == borrower_id)
    if overdue_only:
        q = q.where(overdue_clause(at))
    q = q.order_by(R.requested_at.desc(), R.created_at.desc()).limit(limit).offset(offset)

    return [
        request_to_dict(req, at, asset_name=asset_name, borrower_name=borrower_name)
        for req, asset_name, borrower_name in db.execute(q).all()
    ]


# ---------------- TRANSITIONS ----------------

def _lock_request(db: Session, request_id: str) -> models.BorrowingRequest:
    req = db.execute(select(R).where(R.id == request_id).with_for_update()).scalar_one_or_none()
    if not req:
        raise DependencyError("request", request_id)
    return req


def _asset_status(db: Session, asset_id: str) -> Optional[str]:
    return db.execute(select(models.Asset.status).where(models.Asset.id == asset_id)).scalar_one_or_none()


def _conflict(message: str, code: str, request_status: str, asset_status: Optional[str]):
    raise ConflictError(
        message,
        code=code,
        current_state={"request_status": request_status, "asset_status": asset_status},
    )


@atomic
def create_request(
    db: Session,
    caller: Caller,
    asset_id: str,
    purpose: str,
    start_time: datetime,
    end_time: datetime,
    borrower_id: Optional[str] = None,
) -> models.BorrowingRequest:
    borrower_id = borrower_id or caller.identity_id
    policy.require(
        caller, "borrowing_requests", "insert", {"borrower_id": borrower_id},
        message="requests can only be created for yourself",
    )

    purpose = (purpose or "").strip()
    if not purpose:
        raise ValidationError("purpose is required", "purpose")
    start_time, end_time = as_local_naive(start_time), as_local_naive(end_time)
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time", "end_time")

    asset = db.get(models.Asset, asset_id)
    if not asset:
        raise DependencyError("asset", asset_id)
    if not db.get(models.Profile, borrower_id):
        raise DependencyError("profile", borrower_id)

    stamp = now()
    req = R(
        id=models.new_id(),
        asset_id=asset.id,
        borrower_id=borrower_id,
        purpose=purpose,
        requested_at=stamp,
        start_time=start_time,
        end_time=end_time,
        status="pending",
        created_at=stamp,
        updated_at=stamp,
    )
    db.add(req)
    db.flush()

    append_entry(db, req.id, "request", caller.identity_id, f"Requested {asset.name}")
    stage_change(db, "borrowing_requests", "insert", req.id)
    logger.info("[LEDGER] request %s created for asset %s by %s", req.id, asset.id, borrower_id)
    return req


@atomic
def approve_request(
    db: Session,
    caller: Caller,
    request_id: str,
    notes: Optional[str] = None,
) -> models.BorrowingRequest:
    policy.require(caller, "borrowing_requests", "update", message="only admin or staff can approve requests")
    req = _lock_request(db, request_id)
    asset_status = _asset_status(db, req.asset_id)

    if req.status != "pending":
        _conflict(f"request is {req.status}, not pending", "request_not_pending", req.status, asset_status)
    if asset_status != "available":
        _conflict(f"asset is {asset_status}, not available", "asset_not_available", req.status, asset_status)

    stamp = now()
    res = db.execute(
        update(R)
        .where(R.id == request_id, R.status == "pending")
        .values(
            status="approved",
            approver_id=caller.identity_id,
            approved_at=stamp,
            approval_notes=notes,
            updated_at=stamp,
        )
    )
    if res.rowcount != 1:
        _conflict("request changed concurrently", "request_not_pending", _current_status(db, request_id), asset_status)

    # keyed by asset id, never by name
    res = db.execute(
        update(models.Asset)
        .where(models.Asset.id == req.asset_id, models.Asset.status == "available")
        .values(status="loaned", updated_at=stamp)
    )
    if res.rowcount != 1:
        _conflict("asset changed concurrently", "asset_not_available", "pending", _asset_status(db, req.asset_id))

    append_entry(db, request_id, "approve", caller.identity_id, notes)
    stage_change(db, "borrowing_requests", "update", request_id)
    stage_change(db, "items", "update", req.asset_id)
    logger.info("[LEDGER] request %s approved by %s", request_id, caller.identity_id)
    db.refresh(req)
    return req


@atomic
def reject_request(
    db: Session,
    caller: Caller,
    request_id: str,
    notes: Optional[str] = None,
) -> models.BorrowingRequest:
    policy.require(caller, "borrowing_requests", "update", message="only admin or staff can reject requests")
    req = _lock_request(db, request_id)

    if req.status != "pending":
        _conflict(
            f"request is {req.status}, not pending", "request_not_pending",
            req.status, _asset_status(db, req.asset_id),
        )

    stamp = now()
    res = db.execute(
        update(R)
        .where(R.id == request_id, R.status == "pending")
        .values(
            status="rejected",
            approver_id=caller.identity_id,
            approved_at=stamp,
            approval_notes=notes,
            updated_at=stamp,
        )
    )
    if res.rowcount != 1:
        _conflict(
            "request changed concurrently", "request_not_pending",
            _current_status(db, request_id), _asset_status(db, req.asset_id),
        )

    append_entry(db, request_id, "reject", caller.identity_id, notes)
    stage_change(db, "borrowing_requests", "update", request_id)
    logger.info("[LEDGER] request %s rejected by %s", request_id, caller.identity_id)
    db.refresh(req)
    return req


@atomic
def return_request(
    db: Session,
    caller: Caller,
    request_id: str,
    return_condition: str = "",
    damaged: bool = False,
) -> models.BorrowingRequest:
    policy.require(caller, "borrowing_requests", "update", message="only admin or staff can record returns")
    req = _lock_request(db, request_id)
    asset_status = _asset_status(db, req.asset_id)

    if req.status != "approved":
        _conflict(f"request is {req.status}, not approved", "request_not_approved", req.status, asset_status)

    condition = (return_condition or "").strip() or None
    stamp = now()
    res = db.execute(
        update(R)
        .where(R.id == request_id, R.status == "approved")
        .values(status="returned", returned_at=stamp, return_condition=condition, updated_at=stamp)
    )
    if res.rowcount != 1:
        _conflict("request changed concurrently", "request_not_approved", _current_status(db, request_id), asset_status)

    asset_values = {"status": "damaged" if damaged else "available", "updated_at": stamp}
    if damaged:
        asset_values["condition_notes"] = condition
    res = db.execute(
        update(models.Asset)
        .where(models.Asset.id == req.asset_id, models.Asset.status.in_(("loaned", "overdue")))
        .values(**asset_values)
    )
    if res.rowcount != 1:
        _conflict("asset is not on loan", "asset_not_on_loan", "approved", asset_status)

    append_entry(db, request_id, "return", caller.identity_id, condition)
    stage_change(db, "borrowing_requests", "update", request_id)
    stage_change(db, "items", "update", req.asset_id)
    logger.info("[LEDGER] request %s returned (damaged=%s) by %s", request_id, damaged, caller.identity_id)
    db.refresh(req)
    return req


def _current_status(db: Session, request_id: str) -> Optional[str]:
    return db.execute(select(R.status).where(R.id == request_id)).scalar_one_or_none()


# ---------------- OVERDUE SWEEP ----------------

@atomic
def sweep_overdue(db: Session, performed_by: Optional[str] = None, at: Optional[datetime] = None) -> dict:
    """Mark assets of late loans overdue and log each late request once. Safe to re-run at any interval."""
    at = at or now()
    late = db.execute(select(R).where(overdue_clause(at)).order_by(R.end_time.asc())).scalars().all()

    marked = logged = 0
    for req in late:
        res = db.execute(
            update(models.Asset)
            .where(models.Asset.id == req.asset_id, models.Asset.status == "loaned")
            .values(status="overdue", updated_at=at)
        )
        # loaned -> overdue happens once per loan, so whichever sweep wins the flip logs it
        if res.rowcount != 1:
            continue
        marked += 1
        stage_change(db, "items", "update", req.asset_id)
        actor = performed_by or req.approver_id or req.borrower_id
        append_entry(db, req.id, "overdue", actor, f"Due {req.end_time.isoformat()}")
        logged += 1

    if marked or logged:
        logger.info("[SWEEP] late=%d marked=%d logged=%d", len(late), marked, logged)
    return {"checked": len(late), "assets_marked_overdue": marked, "entries_logged": logged}


def run_overdue_sweep(db: Session, caller: Caller, at: Optional[datetime] = None) -> dict:
    policy.require(caller, "borrowing_requests", "update", message="only admin or staff can run the overdue sweep")
    return sweep_overdue(db, performed_by=caller.identity_id, at=at)
