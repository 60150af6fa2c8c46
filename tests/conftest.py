import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="loanportal-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["MQTT_ENABLED"] = "0"
os.environ["OVERDUE_SWEEP_SECONDS"] = "0"
os.environ["BCRYPT_ROUNDS"] = "4"

import uuid
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from loanportal import models
from loanportal.changes import feed
from loanportal.db import Base, SessionLocal, engine
from loanportal.main import app
from loanportal.policy import Caller
from loanportal.schemas import AssetCreate, ProfilePatch
from loanportal.usecases import catalog, identity, profiles

ROOT = Caller(identity_id="root", roles=frozenset({"admin"}))
PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    feed.clear()
    yield
    feed.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def make_user(db, role=None, email=None, full_name="Test User", **fields) -> Caller:
    """Sign a user up through the identity store and optionally grant one role."""
    email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
    ident = identity.signup(db, email, PASSWORD, full_name)
    if fields:
        profiles.patch_profile(db, ROOT, ident.id, ProfilePatch(**fields))
    if role:
        profiles.grant_role(db, ROOT, ident.id, role)
    return Caller(identity_id=ident.id, roles=frozenset({role}) if role else frozenset())


def make_asset(db, name="Kunci Lab Komputer 1", kind="key", location="Lab Komputer 1") -> models.Asset:
    return catalog.create_asset(db, ROOT, AssetCreate(name=name, kind=kind, location=location))


def window(hours_from_now: float = 1, length_hours: float = 2):
    start = datetime.now() + timedelta(hours=hours_from_now)
    return start, start + timedelta(hours=length_hours)


@pytest.fixture
def admin(db):
    return make_user(db, "admin", email="admin@sekolah.ac.id", full_name="Admin Sistem")


@pytest.fixture
def staff(db):
    return make_user(db, "staff", email="dosen1@sekolah.ac.id", full_name="Budi Santoso")


@pytest.fixture
def student(db):
    return make_user(db, "student", email="siswa1@student.ac.id", full_name="Siswa Satu", department="trkj")


@pytest.fixture
def other_student(db):
    return make_user(db, "student", email="siswa2@student.ac.id", full_name="Siswa Dua", department="ti")


@pytest.fixture
def asset(db):
    return make_asset(db)


def auth_headers(client, email: str, password: str = PASSWORD) -> dict:
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
