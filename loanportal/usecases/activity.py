from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import models, policy
from ..changes import stage_change
from ..errors import DependencyError, ValidationError
from ..policy import Caller
from ..utils import atomic


def utcnow() -> datetime:
    return datetime.now()


def append_entry(
    db: Session,
    request_id: str,
    action: str,
    performed_by: str,
    notes: Optional[str] = None,
) -> models.ActivityLog:
    """Add a log row to the caller's open transaction. Entries are never updated or deleted."""
    if action not in models.LOG_ACTIONS:
        raise ValidationError(f"unknown action '{action}'", "action")

    entry = models.ActivityLog(
        id=models.new_id(),
        request_id=request_id,
        action=action,
        performed_by=performed_by,
        notes=notes,
        created_at=utcnow(),
    )
    db.add(entry)
    stage_change(db, "activity_logs", "insert", entry.id)
    return entry


@atomic
def log_activity(
    db: Session,
    caller: Caller,
    request_id: str,
    action: str,
    notes: Optional[str] = None,
) -> models.ActivityLog:
    policy.require(caller, "activity_logs", "insert")
    if not db.get(models.BorrowingRequest, request_id):
        raise DependencyError("request", request_id)
    return append_entry(db, request_id, action, caller.identity_id, notes)


def list_entries(
    db: Session,
    request_id: Optional[str] = None,
    action: Optional[str] = None,
    performed_by: Optional[str] = None,
    limit: int = 200,
    offset: int = 0,
):
    q = select(models.ActivityLog)
    if request_id:
        q = q.where(models.ActivityLog.request_id == request_id)
    if action:
        q = q.where(models.ActivityLog.action == action)
    if performed_by:
        q = q.where(models.ActivityLog.performed_by == performed_by)
    q = q.order_by(models.ActivityLog.created_at.desc()).limit(limit).offset(offset)
    return db.execute(q).scalars().all()
