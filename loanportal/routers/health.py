from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .deps import get_db, get_mqtt

router = APIRouter(tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db), mqtt=Depends(get_mqtt)):
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError:
        db_ok = False
    return {
        "ok": db_ok,
        "db": db_ok,
        "mqtt": bool(mqtt and mqtt.connected),
    }
