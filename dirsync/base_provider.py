"""Abstract base class for directory providers and the sync cycle they share."""

from __future__ import annotations

import logging
import threading
import time
import traceback
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from dirsync.aggregator import DirectoryState, build_groups, build_users, merge
from dirsync.config import SyncConfig
from dirsync.db import Database
from dirsync.errors import SyncInProgressError
from dirsync.models import Group, MemberRecord, SyncResult, SyncState

logger = logging.getLogger("dirsync.provider")


class BaseProvider(ABC):
    """Each provider implements the group/membership listings and declares PROVIDER_NAME.

    The instance owns the persisted directory and sync cursor, so keep one
    instance alive across cycles for incremental syncs to take effect.
    """

    PROVIDER_NAME: str = ""

    def __init__(self, config: SyncConfig, db: Optional[Database] = None) -> None:
        self.config = config
        self.db = db
        self.tenant_id = config.tenant_id
        self.membership_workers = max(config.membership_workers, 1)
        hours = config.full_resync_interval_hours
        self.full_resync_interval = timedelta(hours=hours) if hours > 0 else None
        self._state = DirectoryState()
        self._lock = threading.Lock()

    @abstractmethod
    def list_groups(
        self,
        since: Optional[SyncState],
        cancel: Optional[threading.Event] = None,
    ) -> tuple[list[Group], SyncState]:
        """List groups changed since ``since`` (all groups when None).

        Returns the groups and the sync state to commit if the cycle succeeds.
        """

    @abstractmethod
    def list_group_members(
        self,
        group_id: str,
        cancel: Optional[threading.Event] = None,
    ) -> list[MemberRecord]:
        """List every member of one group."""

    def close(self) -> None:
        """Release transport resources."""

    @property
    def sync_state(self) -> Optional[SyncState]:
        return self._state.sync_state

    @property
    def state(self) -> DirectoryState:
        return self._state

    def sync(
        self,
        cancel: Optional[threading.Event] = None,
        full: bool = False,
    ) -> SyncResult:
        """Run one sync cycle. Concurrent calls on the same instance are rejected."""
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError(
                f"a {self.PROVIDER_NAME} sync is already running on this instance"
            )
        try:
            return self._run_cycle(cancel, full)
        finally:
            self._lock.release()

    def sync_with_tracking(
        self,
        cancel: Optional[threading.Event] = None,
        full: bool = False,
    ) -> SyncResult:
        """Wrap sync() with sync_runs tracking when a database is configured."""
        run_id = None
        if self.db is not None:
            run_id = self.db.record_run_start(
                tenant_id=self.tenant_id,
                provider=self.PROVIDER_NAME,
                metadata={"requested_full": full},
            )
        try:
            result = self.sync(cancel=cancel, full=full)
        except Exception as exc:
            if run_id is not None:
                self.db.record_run_end(
                    run_id=run_id,
                    tenant_id=self.tenant_id,
                    status="FAILED",
                    error_message=str(exc)[:1000],
                    error_detail={"traceback": traceback.format_exc()},
                )
            logger.error(
                "Sync failed: %s",
                exc,
                extra={"provider": self.PROVIDER_NAME, "run_id": run_id},
            )
            raise

        total = sum(result.counts().values())
        if run_id is not None:
            self.db.record_run_end(
                run_id=run_id,
                tenant_id=self.tenant_id,
                status="SUCCESS",
                records_upserted=total,
                full_sync=result.full,
            )
        logger.info(
            "Sync complete",
            extra={
                "provider": self.PROVIDER_NAME,
                "records": total,
                "run_id": run_id,
                "full_sync": result.full,
            },
        )
        return result

    def _needs_full_sync(self, now: datetime) -> bool:
        state = self._state
        if state.sync_state is None or state.last_full_sync is None:
            return True
        if self.full_resync_interval is None:
            return False
        return now - state.last_full_sync >= self.full_resync_interval

    def _run_cycle(self, cancel: Optional[threading.Event], full: bool) -> SyncResult:
        started = time.monotonic()
        now = datetime.now(timezone.utc)
        state = self._state
        full = full or self._needs_full_sync(now)
        since = None if full else state.sync_state

        groups, new_sync_state = self.list_groups(since, cancel=cancel)
        logger.info(
            "Fetched %d %s groups",
            len(groups),
            "all" if full else "changed",
            extra={"provider": self.PROVIDER_NAME, "entity_type": "group",
                   "records": len(groups), "full_sync": full},
        )

        members_by_group = self._fetch_memberships(groups, cancel)
        merged = merge(
            state,
            groups,
            members_by_group,
            full=full,
            sync_state=new_sync_state,
            now=now,
        )
        result = SyncResult(
            groups=build_groups(merged),
            users=build_users(merged, self.PROVIDER_NAME),
            full=full,
            sync_state=new_sync_state,
            finished_at=datetime.now(timezone.utc),
        )
        # Commit only once the whole cycle succeeded
        self._state = merged

        logger.info(
            "Aggregated %d users across %d groups",
            len(result.users),
            len(result.groups),
            extra={
                "provider": self.PROVIDER_NAME,
                "duration_s": round(time.monotonic() - started, 3),
                "full_sync": full,
            },
        )
        return result

    def _fetch_memberships(
        self,
        groups: Sequence[Group],
        cancel: Optional[threading.Event],
    ) -> list[tuple[str, list[MemberRecord]]]:
        """Fetch each group's members; results come back in group order."""
        if self.membership_workers == 1 or len(groups) <= 1:
            return [(g.id, self.list_group_members(g.id, cancel=cancel)) for g in groups]

        with ThreadPoolExecutor(
            max_workers=self.membership_workers,
            thread_name_prefix=f"{self.PROVIDER_NAME}-members",
        ) as pool:
            futures = [pool.submit(self.list_group_members, g.id, cancel) for g in groups]
            try:
                return [(g.id, f.result()) for g, f in zip(groups, futures)]
            except BaseException:
                for f in futures:
                    f.cancel()
                raise
