"""Database helpers: connection pool and sync run tracking."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Generator, Optional

import psycopg2
import psycopg2.extras
import psycopg2.pool

from dirsync.config import DatabaseConfig

logger = logging.getLogger("dirsync.db")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sync_runs (
    id              UUID PRIMARY KEY,
    tenant_id       TEXT NOT NULL,
    provider        TEXT NOT NULL,
    status          TEXT NOT NULL,
    full_sync       BOOLEAN,
    started_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    finished_at     TIMESTAMPTZ,
    records_upserted INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    error_detail    JSONB,
    run_metadata    JSONB NOT NULL DEFAULT '{}'::jsonb
)
"""


class Database:
    """Thin wrapper around a ThreadedConnectionPool with run-tracking helpers."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=config.min_connections,
            maxconn=config.max_connections,
            dsn=config.url,
        )

    def close(self) -> None:
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Generator:
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Generator:
        """Yield a cursor inside an auto-commit/rollback transaction."""
        with self.connection() as conn:
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def ensure_schema(self) -> None:
        with self.transaction() as cur:
            cur.execute(SCHEMA_SQL)

    def record_run_start(
        self,
        tenant_id: str,
        provider: str,
        metadata: Optional[dict] = None,
    ) -> str:
        """Insert a new sync_runs row with status RUNNING. Returns the run id."""
        run_id = str(uuid.uuid4())
        with self.transaction() as cur:
            cur.execute(
                """INSERT INTO sync_runs
                   (id, tenant_id, provider, status, run_metadata)
                   VALUES (%s, %s, %s, 'RUNNING', %s)""",
                (
                    run_id,
                    tenant_id,
                    provider,
                    psycopg2.extras.Json(metadata or {}),
                ),
            )
        return run_id

    def record_run_end(
        self,
        run_id: str,
        tenant_id: str,
        status: str,
        records_upserted: int = 0,
        full_sync: Optional[bool] = None,
        error_message: Optional[str] = None,
        error_detail: Optional[dict] = None,
    ) -> None:
        """Finalise a sync_runs row."""
        with self.transaction() as cur:
            cur.execute(
                """UPDATE sync_runs
                   SET status = %s,
                       finished_at = NOW(),
                       records_upserted = %s,
                       full_sync = %s,
                       error_message = %s,
                       error_detail = %s
                   WHERE id = %s AND tenant_id = %s""",
                (
                    status,
                    records_upserted,
                    full_sync,
                    error_message,
                    psycopg2.extras.Json(error_detail) if error_detail else None,
                    run_id,
                    tenant_id,
                ),
            )

    def get_recent_runs(
        self,
        tenant_id: str,
        provider: Optional[str] = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Fetch recent sync runs for status display."""
        with self.transaction() as cur:
            if provider:
                cur.execute(
                    """SELECT id, provider, status, full_sync, started_at,
                              finished_at, records_upserted, error_message
                       FROM sync_runs
                       WHERE tenant_id = %s AND provider = %s
                       ORDER BY started_at DESC LIMIT %s""",
                    (tenant_id, provider, limit),
                )
            else:
                cur.execute(
                    """SELECT id, provider, status, full_sync, started_at,
                              finished_at, records_upserted, error_message
                       FROM sync_runs
                       WHERE tenant_id = %s
                       ORDER BY started_at DESC LIMIT %s""",
                    (tenant_id, limit),
                )
            cols = [d[0] for d in cur.description]
            return [dict(zip(cols, row)) for row in cur.fetchall()]
