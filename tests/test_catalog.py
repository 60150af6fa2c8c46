import pytest

from conftest import make_asset, window
from loanportal import models
from loanportal.errors import AuthorizationError, ConflictError, DependencyError, ValidationError
from loanportal.schemas import AssetCreate, AssetPatch
from loanportal.usecases import catalog, ledger


def test_staff_creates_asset(db, staff):
    a = catalog.create_asset(db, staff, AssetCreate(name=" Infokus 01 ", kind="infokus", location="Portable Unit 1"))
    assert a.name == "Infokus 01"
    assert a.kind == "projector"
    assert a.status == "available"


def test_student_cannot_create_asset(db, student):
    with pytest.raises(AuthorizationError):
        catalog.create_asset(db, student, AssetCreate(name="x", kind="key", location="y"))
    assert catalog.list_assets(db) == []


def test_create_requires_name(db, staff):
    with pytest.raises(ValidationError) as exc:
        catalog.create_asset(db, staff, AssetCreate(name="  ", kind="key", location="Aula"))
    assert exc.value.field == "name"


def test_list_filters(db, staff):
    make_asset(db, name="Kunci Aula", location="Aula")
    make_asset(db, name="Kunci Lab Jaringan", location="Lab Jaringan")
    make_asset(db, name="Infokus 01", kind="projector", location="Portable Unit 1")

    assert [a.name for a in catalog.list_assets(db, search="lab")] == ["Kunci Lab Jaringan"]
    assert [a.name for a in catalog.list_assets(db, kind="projector")] == ["Infokus 01"]
    assert len(catalog.list_assets(db, status="available")) == 3
    assert [a.name for a in catalog.list_assets(db, limit=1, offset=1)] == ["Kunci Aula"]


def test_get_missing_asset(db):
    with pytest.raises(DependencyError) as exc:
        catalog.get_asset(db, "nope")
    assert exc.value.code == "asset_not_found"


def test_patch_asset_accepts_old_status_names(db, staff, asset):
    out = catalog.patch_asset(db, staff, asset.id, AssetPatch(status="rusak", condition_notes="retak"))
    assert out.status == "damaged"
    assert out.condition_notes == "retak"


def test_status_is_locked_while_on_loan(db, staff, student, asset):
    start, end = window()
    req = ledger.create_request(db, student, asset.id, "x", start, end)
    ledger.approve_request(db, staff, req.id)

    with pytest.raises(ConflictError) as exc:
        catalog.patch_asset(db, staff, asset.id, AssetPatch(status="available"))
    assert exc.value.current_state == {"asset_status": "loaned"}

    # other fields stay editable
    out = catalog.patch_asset(db, staff, asset.id, AssetPatch(location="Gudang Alat"))
    assert out.location == "Gudang Alat"
    assert out.status == "loaned"


def test_delete_blocked_by_active_request(db, staff, student, asset):
    start, end = window()
    req = ledger.create_request(db, student, asset.id, "x", start, end)

    with pytest.raises(ConflictError):
        catalog.delete_asset(db, staff, asset.id)

    ledger.reject_request(db, staff, req.id)
    assert catalog.delete_asset(db, staff, asset.id) == {"ok": True}
    assert db.get(models.Asset, asset.id) is None
    # closed requests and their log go with the asset
    assert db.get(models.BorrowingRequest, req.id) is None
