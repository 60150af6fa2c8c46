from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .deps import get_caller, get_db
from .. import schemas
from ..policy import Caller
from ..usecases import activity as uc

router = APIRouter(prefix="/activity", tags=["activity"])


class ActivityCreate(BaseModel):
    request_id: str
    action: schemas.LogAction
    notes: str | None = None


@router.get("", response_model=list[schemas.ActivityOut])
def list_activity(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    request_id: str | None = Query(default=None),
    action: schemas.LogAction | None = Query(default=None),
    performed_by: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    return uc.list_entries(db, request_id, action, performed_by, limit, offset)


@router.post("", response_model=schemas.ActivityOut, status_code=201)
def log_activity(body: ActivityCreate, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.log_activity(db, caller, body.request_id, body.action, body.notes)
