"""Okta provider: groups and group memberships via the Okta REST API."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

import requests

from dirsync import __version__
from dirsync.base_provider import BaseProvider
from dirsync.config import SyncConfig
from dirsync.db import Database
from dirsync.models import Group, MemberRecord, SyncState
from dirsync.pagination import collect, walk_pages

logger = logging.getLogger("dirsync.okta")

# Okta's filter expressions want millisecond precision and a literal Z
_FILTER_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def format_filter_time(ts: datetime) -> str:
    ts = ts.astimezone(timezone.utc)
    return f"{ts.strftime(_FILTER_TIME_FORMAT)}.{ts.microsecond // 1000:03d}Z"


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Parse an Okta timestamp such as "2015-10-05T19:16:43.000Z"."""
    if not raw or not isinstance(raw, str):
        return None
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring unparseable timestamp %r", raw)
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def updated_filter(since: SyncState) -> str:
    ts = format_filter_time(since.last_updated)
    return f'lastUpdated gt "{ts}" or lastMembershipUpdated gt "{ts}"'


class OktaProvider(BaseProvider):
    PROVIDER_NAME = "okta"

    def __init__(
        self,
        config: SyncConfig,
        db: Optional[Database] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(config, db)
        okta = config.okta
        self._base = okta.provider_url.rstrip("/")
        self._batch_size = okta.batch_size
        self._timeout = okta.request_timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"SSWS {okta.service_account.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": f"dirsync/{__version__}",
        })
        # Membership fan-out threads each get their own Session, keyed by
        # thread name so pool threads of later cycles reuse them.
        self._worker_sessions: dict[str, requests.Session] = {}
        self._sessions_lock = threading.Lock()

    def close(self) -> None:
        with self._sessions_lock:
            workers = list(self._worker_sessions.values())
            self._worker_sessions.clear()
        for session in workers:
            session.close()
        self._session.close()

    def _member_session(self) -> requests.Session:
        if self.membership_workers == 1:
            return self._session
        name = threading.current_thread().name
        with self._sessions_lock:
            session = self._worker_sessions.get(name)
            if session is None:
                session = requests.Session()
                session.headers.update(self._session.headers)
                self._worker_sessions[name] = session
        return session

    def list_groups(
        self,
        since: Optional[SyncState],
        cancel: Optional[threading.Event] = None,
    ) -> tuple[list[Group], SyncState]:
        cycle_start = datetime.now(timezone.utc)
        params = {"limit": str(self._batch_size)}
        if since is not None:
            params["filter"] = updated_filter(since)

        newest = since.last_updated if since is not None else None
        groups: list[Group] = []
        for page in walk_pages(
            self._session,
            f"{self._base}/api/v1/groups",
            params,
            cancel=cancel,
            timeout=self._timeout,
        ):
            for record in page.records:
                groups.append(self._to_group(record))
                for key in ("lastUpdated", "lastMembershipUpdated"):
                    ts = parse_timestamp(record.get(key))
                    if ts is not None and (newest is None or ts > newest):
                        newest = ts

        return groups, SyncState(last_updated=newest or cycle_start)

    def list_group_members(
        self,
        group_id: str,
        cancel: Optional[threading.Event] = None,
    ) -> list[MemberRecord]:
        records = collect(walk_pages(
            self._member_session(),
            f"{self._base}/api/v1/groups/{quote(group_id, safe='')}/users",
            {"limit": str(self._batch_size)},
            cancel=cancel,
            timeout=self._timeout,
        ))
        logger.debug(
            "Fetched %d members", len(records),
            extra={"provider": self.PROVIDER_NAME, "group_id": group_id},
        )
        return [self._to_member(r) for r in records]

    @staticmethod
    def _to_group(record: dict[str, Any]) -> Group:
        profile = record.get("profile") or {}
        return Group(id=str(record["id"]), name=str(profile.get("name") or record["id"]))

    @staticmethod
    def _to_member(record: dict[str, Any]) -> MemberRecord:
        profile = record.get("profile") or {}
        return MemberRecord(
            id=str(record["id"]),
            email=profile.get("email") or profile.get("login"),
        )
