from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ..db import SessionLocal
from ..errors import AuthenticationError
from ..mqtt import MqttBus
from ..policy import Caller
from ..usecases import identity

bearer = HTTPBearer(auto_error=False)


def get_db():
    db: Session = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_mqtt(req: Request) -> Optional[MqttBus]:
    return getattr(req.app.state, "mqtt", None)


def get_token(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    if not creds or not creds.credentials:
        raise AuthenticationError("missing bearer token")
    return creds.credentials


def get_caller(token: str = Depends(get_token), db: Session = Depends(get_db)) -> Caller:
    return identity.resolve_caller(db, token)
