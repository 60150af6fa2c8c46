from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .deps import get_caller, get_db, get_token
from .. import models, schemas
from ..policy import Caller
from ..usecases import identity

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=schemas.IdentityOut, status_code=status.HTTP_201_CREATED)
def signup(body: schemas.SignupReq, db: Session = Depends(get_db)):
    return identity.signup(db, body.email, body.password, body.full_name)


@router.post("/login", response_model=schemas.TokenOut)
def login(body: schemas.LoginReq, db: Session = Depends(get_db)):
    sess = identity.login(db, body.email, body.password)
    return schemas.TokenOut(
        access_token=sess.token,
        identity_id=sess.identity_id,
        expires_at=sess.expires_at,
    )


@router.post("/logout")
def logout(token: str = Depends(get_token), db: Session = Depends(get_db)):
    return identity.logout(db, token)


@router.get("/me", response_model=schemas.MeOut)
def me(caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    ident = db.get(models.Identity, caller.identity_id)
    profile = db.get(models.Profile, caller.identity_id)
    return schemas.MeOut(
        identity_id=caller.identity_id,
        email=ident.email,
        roles=sorted(caller.roles),
        profile=schemas.ProfileOut.model_validate(profile) if profile else None,
    )


@router.delete("/identities/{identity_id}")
def delete_identity(identity_id: str, caller: Caller = Depends(get_caller), db: Session = Depends(get_db)):
    return identity.delete_identity(db, caller, identity_id)
