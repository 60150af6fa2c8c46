from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .deps import get_caller, get_db
from .. import schemas
from ..policy import Caller
from ..usecases import profiles as uc

router = APIRouter(tags=["profiles"])


# ---------------- PROFILES ----------------
@router.get("/profiles", response_model=list[schemas.ProfileOut])
def list_profiles(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    search: str | None = Query(default=None),
    department: schemas.Department | None = Query(default=None),
    role: schemas.RoleName | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    return uc.list_profiles(db, search, department, role, limit, offset)


@router.get("/profiles/{profile_id}", response_model=schemas.ProfileOut)
def get_profile(profile_id: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.get_profile(db, profile_id)


@router.patch("/profiles/{profile_id}", response_model=schemas.ProfileOut)
def patch_profile(
    profile_id: str,
    body: schemas.ProfilePatch,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return uc.patch_profile(db, caller, profile_id, body)


# ---------------- ROLES ----------------
@router.get("/roles", response_model=list[schemas.RoleOut])
def list_roles(
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    user_id: str | None = Query(default=None),
):
    return uc.list_roles(db, user_id)


@router.post("/roles", response_model=schemas.RoleOut, status_code=201)
def grant_role(body: schemas.RoleGrantReq, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.grant_role(db, caller, body.user_id, body.role)


@router.delete("/roles/{user_id}/{role}")
def revoke_role(user_id: str, role: str, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return uc.revoke_role(db, caller, user_id, role)
