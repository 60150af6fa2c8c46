"""Read-only aggregates over the borrowing ledger.

Nothing here writes. A failing query degrades to an empty result and a warning
so one broken report never takes the dashboard down.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import config, models, policy
from ..errors import AuthorizationError
from ..policy import Caller
from .ledger import list_requests, now, overdue_clause

logger = logging.getLogger(__name__)

R = models.BorrowingRequest
UNKNOWN_DEPARTMENT = "unknown"


def percent(part: int, total: int) -> int:
    # half up: 2.5 -> 3, not round()'s 2
    if not total:
        return 0
    return int(math.floor(100 * part / total + 0.5))


def degrade(default: Callable[[], Any]):
    def deco(fn):
        @wraps(fn)
        def wrapper(db: Session, *args, **kwargs):
            try:
                return fn(db, *args, **kwargs)
            except SQLAlchemyError as exc:
                logger.warning("[REPORTS] %s failed, returning empty result: %s", fn.__name__, exc)
                db.rollback()
                return default()
        return wrapper
    return deco


def _require_staff(caller: Caller) -> None:
    if not caller.is_staff:
        raise AuthorizationError("reports are only available to admin or staff", code="reports_forbidden")


# ---------------- SUMMARY ----------------

def _empty_summary() -> dict:
    return {
        "total_requests": 0,
        "pending": 0,
        "approved": 0,
        "rejected": 0,
        "returned": 0,
        "active_loans": 0,
        "returned_items": 0,
        "overdue": 0,
        "approval_rate": 0,
        "rejection_rate": 0,
    }


def summary(db: Session, caller: Caller, at: Optional[datetime] = None) -> dict:
    _require_staff(caller)
    return _summary(db, at or now())


@degrade(_empty_summary)
def _summary(db: Session, at: datetime) -> dict:
    def count_where(cond):
        return func.coalesce(func.sum(case((cond, 1), else_=0)), 0)

    row = db.execute(
        select(
            func.count(R.id),
            count_where(R.status == "pending"),
            count_where(R.status == "approved"),
            count_where(R.status == "rejected"),
            count_where(R.status == "returned"),
            count_where((R.status == "approved") & R.returned_at.is_(None)),
            count_where(R.returned_at.is_not(None)),
            count_where(overdue_clause(at)),
        )
    ).one()
    total, pending, approved, rejected, returned, active, returned_items, overdue = (int(v or 0) for v in row)

    out = _empty_summary()
    out.update(
        total_requests=total,
        pending=pending,
        approved=approved,
        rejected=rejected,
        returned=returned,
        active_loans=active,
        returned_items=returned_items,
        overdue=overdue,
        approval_rate=percent(approved, total),
        rejection_rate=percent(rejected, total),
    )
    return out


# ---------------- BY ASSET ----------------

def by_asset(db: Session, caller: Caller) -> list[dict]:
    _require_staff(caller)
    return _by_asset(db)


@degrade(list)
def _by_asset(db: Session) -> list[dict]:
    loans = func.count(R.id).label("total_loans")
    rows = db.execute(
        select(models.Asset.id, models.Asset.name, models.Asset.kind, models.Asset.status, loans)
        .join(R, R.asset_id == models.Asset.id)
        .where(R.status == "approved")
        .group_by(models.Asset.id, models.Asset.name, models.Asset.kind, models.Asset.status)
        .order_by(loans.desc(), models.Asset.name.asc())
    ).all()
    return [
        {"asset_id": aid, "name": name, "kind": kind, "status": status, "total_loans": int(n)}
        for aid, name, kind, status, n in rows
    ]


# ---------------- BY DEPARTMENT ----------------

def by_department(db: Session, caller: Caller) -> list[dict]:
    _require_staff(caller)
    return _by_department(db)


def _empty_departments() -> list[dict]:
    return [
        {"department": d, "total_requests": 0, "approved_requests": 0, "approval_rate": 0}
        for d in models.DEPARTMENTS
    ]


@degrade(_empty_departments)
def _by_department(db: Session) -> list[dict]:
    dept = func.coalesce(models.Profile.department, UNKNOWN_DEPARTMENT).label("department")
    rows = db.execute(
        select(
            dept,
            func.count(R.id),
            func.coalesce(func.sum(case((R.status == "approved", 1), else_=0)), 0),
        )
        .join(models.Profile, models.Profile.id == R.borrower_id)
        .group_by(dept)
    ).all()

    stats = {d: [0, 0] for d in models.DEPARTMENTS}
    for name, total, approved in rows:
        stats[name] = [int(total), int(approved or 0)]

    out = [
        {
            "department": name,
            "total_requests": total,
            "approved_requests": approved,
            "approval_rate": percent(approved, total),
        }
        for name, (total, approved) in stats.items()
    ]
    # stable: ties keep trkj, ti, trmm, unknown order
    out.sort(key=lambda s: s["total_requests"], reverse=True)
    return out


# ---------------- RECENT ACTIVITY ----------------

def recent_activity(db: Session, caller: Caller, limit: int = 20, offset: int = 0) -> dict:
    _require_staff(caller)
    limit = max(1, min(limit, config.RECENT_ACTIVITY_MAX))
    offset = max(0, offset)
    return _recent_activity(db, limit, offset)


def _empty_page(limit: int, offset: int) -> dict:
    return {"items": [], "total": 0, "limit": limit, "offset": offset}


def _recent_activity(db: Session, limit: int, offset: int) -> dict:
    try:
        total = db.execute(select(func.count(R.id))).scalar_one()
        rows = db.execute(
            select(R, models.Profile, models.Asset.name)
            .join(models.Profile, models.Profile.id == R.borrower_id)
            .join(models.Asset, models.Asset.id == R.asset_id)
            .order_by(R.requested_at.desc(), R.created_at.desc())
            .limit(limit)
            .offset(offset)
        ).all()
    except SQLAlchemyError as exc:
        logger.warning("[REPORTS] recent_activity failed, returning empty page: %s", exc)
        db.rollback()
        return _empty_page(limit, offset)

    items = [
        {
            "request_id": req.id,
            "borrower_name": prof.full_name,
            "id_number": prof.id_number or "",
            "department": prof.department or UNKNOWN_DEPARTMENT,
            "asset_name": asset_name,
            "purpose": req.purpose,
            "status": req.status,
            "requested_at": req.requested_at,
            "start_time": req.start_time,
            "end_time": req.end_time,
        }
        for req, prof, asset_name in rows
    ]
    return {"items": items, "total": int(total), "limit": limit, "offset": offset}


# ---------------- DASHBOARD ----------------

def _empty_dashboard() -> dict:
    return {
        "total_assets": 0,
        "available_assets": 0,
        "loaned_assets": 0,
        "overdue_assets": 0,
        "damaged_assets": 0,
        "pending_requests": 0,
        "my_active_requests": 0,
        "recent_requests": [],
    }


@degrade(_empty_dashboard)
def dashboard(db: Session, caller: Caller, at: Optional[datetime] = None) -> dict:
    """Counters for the landing page. Open to every signed-in caller; students only see their own requests."""
    at = at or now()
    by_status = dict(
        db.execute(select(models.Asset.status, func.count(models.Asset.id)).group_by(models.Asset.status)).all()
    )
    overdue_assets = db.execute(
        select(func.count(func.distinct(R.asset_id))).where(overdue_clause(at))
    ).scalar_one()

    pending_q = select(func.count(R.id)).where(R.status == "pending")
    row_filter = policy.request_read_filter(caller)
    if row_filter is not None:
        pending_q = pending_q.where(row_filter)

    mine = db.execute(
        select(func.count(R.id)).where(
            R.borrower_id == caller.identity_id,
            R.status.in_(models.ACTIVE_REQUEST_STATUSES),
        )
    ).scalar_one()

    out = _empty_dashboard()
    out.update(
        total_assets=sum(by_status.values()),
        available_assets=by_status.get("available", 0),
        loaned_assets=by_status.get("loaned", 0) + by_status.get("overdue", 0),
        overdue_assets=int(overdue_assets),
        damaged_assets=by_status.get("damaged", 0),
        pending_requests=db.execute(pending_q).scalar_one(),
        my_active_requests=mine,
        recent_requests=list_requests(db, caller, limit=5, at=at),
    )
    return out
