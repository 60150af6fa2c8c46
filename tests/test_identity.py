from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import PASSWORD, ROOT, make_user, window
from loanportal import models
from loanportal.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    DependencyError,
    ValidationError,
)
from loanportal.schemas import ProfilePatch
from loanportal.usecases import identity, ledger, profiles


def test_signup_creates_matching_profile(db):
    ident = identity.signup(db, "  Guru@Sekolah.ac.id ", PASSWORD)
    p = profiles.get_profile(db, ident.id)
    assert ident.email == "guru@sekolah.ac.id"
    assert p.email == "guru@sekolah.ac.id"
    assert p.full_name == "User"


def test_signup_uses_given_name(db):
    ident = identity.signup(db, "a@b.id", PASSWORD, "Siti Rahayu")
    assert profiles.get_profile(db, ident.id).full_name == "Siti Rahayu"


def test_duplicate_signup_conflicts(db):
    identity.signup(db, "a@b.id", PASSWORD)
    with pytest.raises(ConflictError):
        identity.signup(db, "A@B.id", PASSWORD)
    assert len(db.execute(select(models.Identity)).scalars().all()) == 1


@pytest.mark.parametrize("email, password, field", [
    ("not-an-email", PASSWORD, "email"),
    ("a@b.id", "short", "password"),
])
def test_signup_validation(db, email, password, field):
    with pytest.raises(ValidationError) as exc:
        identity.signup(db, email, password)
    assert exc.value.field == field


def test_failed_profile_handler_rolls_back_identity(db):
    ident = identity.signup(db, "a@b.id", PASSWORD)
    profiles.patch_profile(db, ROOT, ident.id, ProfilePatch(email="taken@b.id"))

    with pytest.raises(ConflictError):
        identity.signup(db, "taken@b.id", PASSWORD)
    assert identity.find_identity(db, "taken@b.id") is None


def test_passwords_are_hashed(db):
    ident = identity.signup(db, "a@b.id", PASSWORD)
    assert PASSWORD not in ident.password_hash
    assert ident.password_hash.startswith("$2b$")
    assert identity.verify_password(PASSWORD, ident.password_hash)
    assert not identity.verify_password("wrong-password", ident.password_hash)
    assert not identity.verify_password(PASSWORD, "garbage")


def test_login_and_resolve_caller(db):
    c = make_user(db, "staff", email="dosen@sekolah.ac.id")
    sess = identity.login(db, "dosen@sekolah.ac.id", PASSWORD)

    caller = identity.resolve_caller(db, sess.token)
    assert caller.identity_id == c.identity_id
    assert caller.is_staff

    identity.logout(db, sess.token)
    with pytest.raises(AuthenticationError):
        identity.resolve_caller(db, sess.token)


def test_login_wrong_password(db):
    make_user(db, email="x@y.id")
    with pytest.raises(AuthenticationError) as exc:
        identity.login(db, "x@y.id", "not-the-password")
    assert exc.value.code == "invalid_credentials"


def test_expired_session_is_rejected(db):
    make_user(db, email="x@y.id")
    sess = identity.login(db, "x@y.id", PASSWORD)
    sess.expires_at = datetime.now() - timedelta(minutes=1)
    db.commit()
    with pytest.raises(AuthenticationError):
        identity.resolve_caller(db, sess.token)


def test_resolve_without_token(db):
    with pytest.raises(AuthenticationError):
        identity.resolve_caller(db, None)


# ---------------- profiles ----------------

def test_patch_own_profile(db, student):
    out = profiles.patch_profile(
        db, student, student.identity_id,
        ProfilePatch(id_number="2024TI1001", department="TI", class_label="TI-1", cohort_year=2024),
    )
    assert out.department == "ti"
    assert out.cohort_year == 2024


def test_cannot_patch_someone_elses_profile(db, student, other_student, staff):
    with pytest.raises(AuthorizationError):
        profiles.patch_profile(db, student, other_student.identity_id, ProfilePatch(full_name="Hacked"))
    with pytest.raises(AuthorizationError):
        profiles.patch_profile(db, staff, other_student.identity_id, ProfilePatch(full_name="Hacked"))
    assert profiles.get_profile(db, other_student.identity_id).full_name == "Siswa Dua"


def test_admin_patches_any_profile(db, admin, student):
    out = profiles.patch_profile(db, admin, student.identity_id, ProfilePatch(full_name="Siswa Baru"))
    assert out.full_name == "Siswa Baru"


def test_id_number_must_be_unique(db, student, other_student):
    profiles.patch_profile(db, student, student.identity_id, ProfilePatch(id_number="N1"))
    with pytest.raises(ConflictError):
        profiles.patch_profile(db, other_student, other_student.identity_id, ProfilePatch(id_number="N1"))


def test_empty_name_rejected(db, student):
    with pytest.raises(ValidationError):
        profiles.patch_profile(db, student, student.identity_id, ProfilePatch(full_name="  "))


def test_list_profiles_filters(db, student, other_student, staff):
    assert [p.full_name for p in profiles.list_profiles(db, department="trkj")] == ["Siswa Satu"]
    assert {p.full_name for p in profiles.list_profiles(db, role="student")} == {"Siswa Satu", "Siswa Dua"}
    assert [p.full_name for p in profiles.list_profiles(db, search="budi")] == ["Budi Santoso"]


# ---------------- roles ----------------

def test_grant_and_revoke_role(db, admin, student):
    m = profiles.grant_role(db, admin, student.identity_id, "staff")
    assert m.role == "staff"
    assert {r.role for r in profiles.list_roles(db, student.identity_id)} == {"student", "staff"}

    with pytest.raises(ConflictError):
        profiles.grant_role(db, admin, student.identity_id, "staff")

    profiles.revoke_role(db, admin, student.identity_id, "guru")
    assert {r.role for r in profiles.list_roles(db, student.identity_id)} == {"student"}

    with pytest.raises(DependencyError):
        profiles.revoke_role(db, admin, student.identity_id, "staff")


def test_only_admin_manages_roles(db, staff, student):
    with pytest.raises(AuthorizationError):
        profiles.grant_role(db, staff, student.identity_id, "admin")
    with pytest.raises(AuthorizationError):
        profiles.revoke_role(db, student, student.identity_id, "student")


def test_grant_unknown_role_or_profile(db, admin):
    with pytest.raises(ValidationError):
        profiles.grant_role(db, admin, admin.identity_id, "principal")
    with pytest.raises(DependencyError):
        profiles.grant_role(db, admin, "missing", "staff")


# ---------------- delete ----------------

def test_delete_identity_cascades(db, admin, staff, student, asset):
    start, end = window()
    req = ledger.create_request(db, student, asset.id, "x", start, end)
    ledger.approve_request(db, staff, req.id)
    identity.login(db, "siswa1@student.ac.id", PASSWORD)

    identity.delete_identity(db, admin, student.identity_id)
    db.expire_all()

    assert db.get(models.Profile, student.identity_id) is None
    assert profiles.list_roles(db, student.identity_id) == []
    assert db.get(models.BorrowingRequest, req.id) is None
    assert db.execute(
        select(models.ActivityLog).where(models.ActivityLog.request_id == req.id)
    ).first() is None
    assert db.execute(
        select(models.AuthSession).where(models.AuthSession.identity_id == student.identity_id)
    ).first() is None


def test_deleting_approver_keeps_request(db, admin, staff, student, asset):
    start, end = window()
    req = ledger.create_request(db, student, asset.id, "x", start, end)
    ledger.reject_request(db, staff, req.id)

    identity.delete_identity(db, admin, staff.identity_id)
    db.expire_all()

    kept = db.get(models.BorrowingRequest, req.id)
    assert kept is not None
    assert kept.approver_id is None


def test_only_admin_deletes_identities(db, staff, student):
    with pytest.raises(AuthorizationError):
        identity.delete_identity(db, staff, student.identity_id)
