from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .deps import get_caller, get_db
from .. import schemas
from ..policy import Caller
from ..usecases import reports as uc

router = APIRouter(tags=["reports"])


@router.get("/reports/summary", response_model=schemas.SummaryOut)
def summary(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.summary(db, caller)


@router.get("/reports/by-asset", response_model=list[schemas.AssetLoanStat])
def by_asset(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.by_asset(db, caller)


@router.get("/reports/by-department", response_model=list[schemas.DepartmentStat])
def by_department(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.by_department(db, caller)


@router.get("/reports/recent-activity", response_model=schemas.ActivityFeedPage)
def recent_activity(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    limit: int = Query(default=20, ge=1),
    offset: int = Query(default=0, ge=0),
):
    return uc.recent_activity(db, caller, limit, offset)


@router.get("/dashboard", response_model=schemas.DashboardOut)
def dashboard(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.dashboard(db, caller)
