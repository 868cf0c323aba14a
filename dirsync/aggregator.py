"""Fold per-group membership listings into the running user/group directory.

A full cycle replaces the directory. An incremental cycle only covers the
groups the provider reported as changed, so its results are merged into the
directory persisted by earlier cycles: every refreshed group's membership is
replaced wholesale (it was fetched in full) and every other group is left as
it was. Users left without any group are dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from dirsync.models import Group, MemberRecord, SyncState, User


@dataclass(frozen=True)
class DirectoryState:
    """Everything a provider instance carries from one cycle to the next."""

    groups: dict[str, Group] = field(default_factory=dict)
    # native user id -> group ids
    memberships: dict[str, frozenset[str]] = field(default_factory=dict)
    emails: dict[str, str] = field(default_factory=dict)
    sync_state: Optional[SyncState] = None
    last_full_sync: Optional[datetime] = None


def invert(
    members_by_group: Iterable[tuple[str, Sequence[MemberRecord]]],
) -> tuple[dict[str, set[str]], dict[str, str]]:
    """Build the user -> group ids mapping from group -> members listings."""
    user_groups: dict[str, set[str]] = {}
    emails: dict[str, str] = {}
    for group_id, members in members_by_group:
        for member in members:
            user_groups.setdefault(member.id, set()).add(group_id)
            if member.email:
                emails[member.id] = member.email
    return user_groups, emails


def merge(
    state: DirectoryState,
    groups: Sequence[Group],
    members_by_group: Iterable[tuple[str, Sequence[MemberRecord]]],
    *,
    full: bool,
    sync_state: Optional[SyncState],
    now: datetime,
) -> DirectoryState:
    """Return the directory after applying one cycle's results.

    ``state`` is never modified.
    """
    if full:
        merged_groups: dict[str, Group] = {}
        memberships: dict[str, set[str]] = {}
        emails: dict[str, str] = {}
    else:
        merged_groups = dict(state.groups)
        memberships = {uid: set(gids) for uid, gids in state.memberships.items()}
        emails = dict(state.emails)

    refreshed = {g.id for g in groups}
    for group in groups:
        merged_groups[group.id] = group
    for gids in memberships.values():
        gids -= refreshed

    cycle_groups, cycle_emails = invert(members_by_group)
    for uid, gids in cycle_groups.items():
        memberships.setdefault(uid, set()).update(gids)
    emails.update(cycle_emails)

    final = {uid: frozenset(gids) for uid, gids in memberships.items() if gids}
    return DirectoryState(
        groups=merged_groups,
        memberships=final,
        emails={uid: e for uid, e in emails.items() if uid in final},
        sync_state=sync_state,
        last_full_sync=now if full else state.last_full_sync,
    )


def build_users(state: DirectoryState, provider_name: str) -> list[User]:
    users = [
        User(
            id=f"{provider_name}/{uid}",
            group_ids=tuple(sorted(gids)),
            email=state.emails.get(uid),
        )
        for uid, gids in state.memberships.items()
    ]
    users.sort(key=lambda u: u.id)
    return users


def build_groups(state: DirectoryState) -> list[Group]:
    return sorted(state.groups.values(), key=lambda g: g.id)
