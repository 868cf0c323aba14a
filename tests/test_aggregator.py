"""Tests for merging cycle results into the running directory."""

from __future__ import annotations

from datetime import datetime, timezone

from dirsync.aggregator import DirectoryState, build_groups, build_users, invert, merge
from dirsync.models import Group, MemberRecord, SyncState, User

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
STATE = SyncState(last_updated=NOW)


def members(*ids):
    return [MemberRecord(id=i, email=f"{i}@example.com") for i in ids]


def baseline() -> DirectoryState:
    return merge(
        DirectoryState(),
        [Group("eng", "Engineering"), Group("ops", "Operations"), Group("empty", "Empty")],
        [("eng", members("alice", "bob")), ("ops", members("bob")), ("empty", [])],
        full=True,
        sync_state=STATE,
        now=NOW,
    )


def test_invert_deduplicates():
    user_groups, emails = invert([("eng", members("alice", "alice")), ("ops", members("alice"))])

    assert user_groups == {"alice": {"eng", "ops"}}
    assert emails == {"alice": "alice@example.com"}


def test_full_merge_builds_directory():
    state = baseline()

    assert build_users(state, "okta") == [
        User("okta/alice", ("eng",), "alice@example.com"),
        User("okta/bob", ("eng", "ops"), "bob@example.com"),
    ]
    # Groups without members are still part of the directory
    assert [g.id for g in build_groups(state)] == ["empty", "eng", "ops"]
    assert state.last_full_sync == NOW
    assert state.sync_state == STATE


def test_full_merge_replaces_previous_directory():
    state = merge(
        baseline(),
        [Group("ops", "Operations")],
        [("ops", members("carol"))],
        full=True,
        sync_state=STATE,
        now=NOW,
    )

    assert [g.id for g in build_groups(state)] == ["ops"]
    assert build_users(state, "okta") == [User("okta/carol", ("ops",), "carol@example.com")]


def test_incremental_merge_is_additive():
    later = datetime(2024, 1, 2, tzinfo=timezone.utc)
    state = merge(
        baseline(),
        [Group("new", "New")],
        [("new", members("dave"))],
        full=False,
        sync_state=SyncState(last_updated=later),
        now=later,
    )

    assert [g.id for g in build_groups(state)] == ["empty", "eng", "new", "ops"]
    assert build_users(state, "okta")[-1] == User("okta/dave", ("new",), "dave@example.com")
    assert len(build_users(state, "okta")) == 3
    # Incremental cycles keep the last full sync time
    assert state.last_full_sync == NOW


def test_incremental_merge_replaces_refreshed_membership():
    state = merge(
        baseline(),
        [Group("eng", "Engineering (renamed)")],
        [("eng", members("bob", "erin"))],
        full=False,
        sync_state=STATE,
        now=NOW,
    )

    users = {u.id: u.group_ids for u in build_users(state, "okta")}
    # alice only belonged to eng and was removed from it
    assert users == {"okta/bob": ("eng", "ops"), "okta/erin": ("eng",)}
    assert state.groups["eng"].name == "Engineering (renamed)"
    assert "alice" not in state.emails


def test_merge_does_not_touch_input_state():
    before = baseline()
    snapshot = (dict(before.groups), dict(before.memberships), dict(before.emails))

    merge(before, [Group("eng", "x")], [("eng", [])], full=False, sync_state=None, now=NOW)

    assert (before.groups, before.memberships, before.emails) == snapshot


def test_build_users_sorted_by_id():
    state = merge(
        DirectoryState(),
        [Group("g", "G")],
        [("g", members("zed", "amy", "mike"))],
        full=True,
        sync_state=STATE,
        now=NOW,
    )

    assert [u.id for u in build_users(state, "okta")] == ["okta/amy", "okta/mike", "okta/zed"]
