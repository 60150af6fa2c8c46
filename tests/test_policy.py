import pytest

from conftest import ROOT, make_user
from loanportal import policy
from loanportal.errors import AuthorizationError
from loanportal.policy import Caller
from loanportal.usecases import profiles

ADMIN = Caller("a", frozenset({"admin"}))
STAFF = Caller("s", frozenset({"staff"}))
STUDENT = Caller("u", frozenset({"student"}))
NOBODY = Caller("n")


def test_has_role_is_a_plain_lookup(db):
    c = make_user(db, "staff")
    assert policy.has_role(db, c.identity_id, "staff")
    assert not policy.has_role(db, c.identity_id, "admin")
    # repeated calls see the same answer and change nothing
    assert policy.has_role(db, c.identity_id, "staff")
    assert policy.roles_of(db, c.identity_id) == frozenset({"staff"})


def test_caller_for_collects_every_role(db):
    c = make_user(db, "staff")
    profiles.grant_role(db, ROOT, c.identity_id, "admin")

    caller = policy.caller_for(db, c.identity_id)
    assert caller.is_admin and caller.is_staff


@pytest.mark.parametrize("caller, expected", [(ADMIN, True), (STAFF, True), (STUDENT, False), (NOBODY, False)])
def test_asset_writes_need_admin_or_staff(caller, expected):
    for op in ("insert", "update", "delete"):
        assert policy.can(caller, "items", op) is expected
    assert policy.can(caller, "items", "read")


def test_profiles_are_self_or_admin_writable():
    mine = {"id": "u"}
    theirs = {"id": "x"}
    assert policy.can(STUDENT, "profiles", "update", mine)
    assert not policy.can(STUDENT, "profiles", "update", theirs)
    assert policy.can(ADMIN, "profiles", "update", theirs)
    assert not policy.can(STAFF, "profiles", "update", theirs)
    assert not policy.can(ADMIN, "profiles", "delete", theirs)


def test_roles_are_admin_only():
    assert policy.can(ADMIN, "user_roles", "insert")
    assert not policy.can(STAFF, "user_roles", "insert")
    assert policy.can(STUDENT, "user_roles", "read")


def test_request_rules():
    own = {"borrower_id": "u"}
    other = {"borrower_id": "x"}
    assert policy.can(STUDENT, "borrowing_requests", "read", own)
    assert not policy.can(STUDENT, "borrowing_requests", "read", other)
    assert policy.can(STAFF, "borrowing_requests", "read", other)

    assert policy.can(STUDENT, "borrowing_requests", "insert", own)
    assert not policy.can(STUDENT, "borrowing_requests", "insert", other)
    # staff can't file requests on someone else's behalf either
    assert not policy.can(STAFF, "borrowing_requests", "insert", other)

    assert not policy.can(STUDENT, "borrowing_requests", "update", own)
    assert policy.can(STAFF, "borrowing_requests", "update", other)
    assert not policy.can(ADMIN, "borrowing_requests", "delete", other)


def test_activity_log_is_append_only():
    assert policy.can(NOBODY, "activity_logs", "insert")
    assert not policy.can(ADMIN, "activity_logs", "update")
    assert not policy.can(ADMIN, "activity_logs", "delete")


def test_unknown_table_is_denied():
    assert not policy.can(ADMIN, "secrets", "read")


def test_require_raises_with_code():
    with pytest.raises(AuthorizationError) as exc:
        policy.require(STUDENT, "items", "insert")
    assert exc.value.code == "items_insert_forbidden"
    assert exc.value.http_status == 403


def test_request_read_filter():
    assert policy.request_read_filter(STAFF) is None
    assert policy.request_read_filter(ADMIN) is None
    clause = policy.request_read_filter(STUDENT)
    assert clause is not None
    assert clause.right.value == "u"
