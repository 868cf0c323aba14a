"""Provider-agnostic directory model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class Group:
    id: str
    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class MemberRecord:
    """A group member as returned by the provider, before aggregation."""

    id: str
    email: Optional[str] = None


@dataclass(frozen=True)
class User:
    id: str  # "<provider>/<native id>"
    group_ids: tuple[str, ...]
    email: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "group_ids": list(self.group_ids), "email": self.email}


@dataclass(frozen=True)
class SyncState:
    """Marks the last successful sync. Only ever replaced, never mutated."""

    last_updated: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"last_updated": self.last_updated.isoformat()}


@dataclass(frozen=True)
class Page:
    records: list[dict[str, Any]]
    next_url: Optional[str] = None


@dataclass(frozen=True)
class SyncResult:
    groups: list[Group]
    users: list[User]
    full: bool = True
    sync_state: Optional[SyncState] = None
    finished_at: Optional[datetime] = field(default=None, compare=False)

    def counts(self) -> dict[str, int]:
        return {"groups": len(self.groups), "users": len(self.users)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "full_sync": self.full,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "sync_state": self.sync_state.to_dict() if self.sync_state else None,
            "groups": [g.to_dict() for g in self.groups],
            "users": [u.to_dict() for u in self.users],
        }
