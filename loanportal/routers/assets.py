from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .deps import get_caller, get_db
from .. import schemas
from ..policy import Caller
from ..usecases import catalog as uc

router = APIRouter(prefix="/assets", tags=["assets"])


@router.get("", response_model=list[schemas.AssetOut])
def list_assets(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    search: str | None = Query(default=None),
    status: schemas.AssetStatus | None = Query(default=None),
    kind: schemas.AssetKind | None = Query(default=None),
    limit: int = Query(default=500, ge=1, le=2000),
    offset: int = Query(default=0, ge=0),
):
    return uc.list_assets(db, search, status, kind, limit, offset)


@router.post("", response_model=schemas.AssetOut, status_code=201)
def create_asset(body: schemas.AssetCreate, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.create_asset(db, caller, body)


@router.get("/{asset_id}", response_model=schemas.AssetOut)
def get_asset(asset_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.get_asset(db, asset_id)


@router.patch("/{asset_id}", response_model=schemas.AssetOut)
def patch_asset(
    asset_id: str,
    body: schemas.AssetPatch,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return uc.patch_asset(db, caller, asset_id, body)


@router.delete("/{asset_id}")
def delete_asset(asset_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.delete_asset(db, caller, asset_id)
