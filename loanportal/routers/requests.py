from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .deps import get_caller, get_db
from .. import models, schemas
from ..policy import Caller
from ..usecases import ledger

router = APIRouter(prefix="/requests", tags=["requests"])


def _out(db: Session, req: models.BorrowingRequest) -> dict:
    asset = db.get(models.Asset, req.asset_id)
    borrower = db.get(models.Profile, req.borrower_id)
    return ledger.request_to_dict(
        req,
        asset_name=asset.name if asset else None,
        borrower_name=borrower.full_name if borrower else None,
    )


@router.get("", response_model=list[schemas.RequestOut])
def list_requests(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    status: schemas.RequestStatus | None = Query(default=None),
    asset_id: str | None = Query(default=None),
    borrower_id: str | None = Query(default=None),
    overdue_only: bool = Query(default=False),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    return ledger.list_requests(db, caller, status, asset_id, borrower_id, overdue_only, limit, offset)


@router.post("", response_model=schemas.RequestOut, status_code=201)
def create_request(body: schemas.RequestCreate, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    req = ledger.create_request(
        db, caller,
        asset_id=body.asset_id,
        purpose=body.purpose,
        start_time=body.start_time,
        end_time=body.end_time,
        borrower_id=body.borrower_id,
    )
    return _out(db, req)


@router.post("/overdue-sweep", response_model=schemas.SweepOut)
def overdue_sweep(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return ledger.run_overdue_sweep(db, caller)


@router.get("/{request_id}", response_model=schemas.RequestOut)
def get_request(request_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return _out(db, ledger.get_request(db, caller, request_id))


@router.post("/{request_id}/approve", response_model=schemas.RequestOut)
def approve_request(
    request_id: str,
    body: schemas.DecisionReq | None = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    req = ledger.approve_request(db, caller, request_id, body.notes if body else None)
    return _out(db, req)


@router.post("/{request_id}/reject", response_model=schemas.RequestOut)
def reject_request(
    request_id: str,
    body: schemas.DecisionReq | None = None,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    req = ledger.reject_request(db, caller, request_id, body.notes if body else None)
    return _out(db, req)


@router.post("/{request_id}/return", response_model=schemas.RequestOut)
def return_request(
    request_id: str,
    body: schemas.ReturnReq,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    req = ledger.return_request(db, caller, request_id, body.return_condition, body.damaged)
    return _out(db, req)
