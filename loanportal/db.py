import logging
import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    future=True,
    pool_pre_ping=True,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


class Base(DeclarativeBase):
    pass


def enable_sqlite_foreign_keys(target_engine) -> None:
    """Cascading deletes rely on FK enforcement, which sqlite leaves off by default."""
    if target_engine.dialect.name != "sqlite":
        return

    @event.listens_for(target_engine, "connect")
    def _fk_pragma(dbapi_conn, _record):
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


enable_sqlite_foreign_keys(engine)


def init_db():
    if DATABASE_URL.startswith("sqlite:///./"):
        os.makedirs("./data", exist_ok=True)

    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info("[DB] initialized tables=%s", sorted(Base.metadata.tables.keys()))
