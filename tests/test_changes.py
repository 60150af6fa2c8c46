import pytest

from conftest import window
from loanportal.changes import ANY_TABLE, ChangeFeed, feed
from loanportal.errors import ConflictError
from loanportal.usecases import ledger


def test_subscribe_and_unsubscribe():
    f = ChangeFeed()
    seen = []
    unsubscribe = f.subscribe("items", seen.append)
    f.publish("items", "update", "a1")
    f.publish("profiles", "update", "p1")
    unsubscribe()
    f.publish("items", "update", "a2")
    assert seen == [{"table": "items", "op": "update", "id": "a1"}]


def test_broken_listener_does_not_stop_others():
    f = ChangeFeed()
    seen = []

    def broken(change):
        raise RuntimeError("listener bug")

    f.subscribe(ANY_TABLE, broken)
    f.subscribe(ANY_TABLE, seen.append)
    f.publish("items", "insert", "a1")
    assert len(seen) == 1


def test_approval_publishes_after_commit(db, staff, student, asset):
    start, end = window()
    req = ledger.create_request(db, student, asset.id, "x", start, end)

    seen = []
    feed.subscribe(ANY_TABLE, seen.append)
    ledger.approve_request(db, staff, req.id)

    tables = {(c["table"], c["op"]) for c in seen}
    assert ("borrowing_requests", "update") in tables
    assert ("items", "update") in tables
    assert ("activity_logs", "insert") in tables


def test_failed_transition_publishes_nothing(db, staff, student, asset):
    start, end = window()
    req = ledger.create_request(db, student, asset.id, "x", start, end)
    ledger.reject_request(db, staff, req.id)

    seen = []
    feed.subscribe(ANY_TABLE, seen.append)
    with pytest.raises(ConflictError):
        ledger.approve_request(db, staff, req.id)
    assert seen == []
