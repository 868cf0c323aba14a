"""APScheduler-based interval scheduling for directory syncs.

The scheduler keeps a single provider instance alive so each cycle can run
incrementally against the state committed by the previous one.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from dirsync.base_provider import BaseProvider
from dirsync.config import SyncConfig
from dirsync.errors import (
    AuthError,
    DirectorySyncError,
    RateLimitError,
    SyncCancelledError,
    SyncInProgressError,
)

logger = logging.getLogger("dirsync.scheduler")

BACKOFF_BASE_SECONDS = 30
MAX_BACKOFF_SECONDS = 900


def _retry_delay(exc: DirectorySyncError, attempt: int) -> float:
    if isinstance(exc, RateLimitError) and exc.reset_at:
        return float(min(max(exc.reset_at - int(time.time()), 1), MAX_BACKOFF_SECONDS))
    return float(min(BACKOFF_BASE_SECONDS * (2 ** attempt), MAX_BACKOFF_SECONDS))


def run_sync_cycle(
    provider: BaseProvider,
    config: SyncConfig,
    cancel: threading.Event,
) -> None:
    """Run one provider sync, retrying failed cycles with exponential backoff."""
    max_retries = config.scheduler.max_retries

    for attempt in range(max_retries + 1):
        try:
            provider.sync_with_tracking(cancel=cancel)
            return
        except SyncInProgressError as exc:
            logger.warning("Skipping cycle: %s", exc)
            return
        except SyncCancelledError:
            logger.info("Sync %s cancelled", provider.PROVIDER_NAME)
            return
        except AuthError as exc:
            # Retrying with the same credential cannot succeed
            logger.error(
                "Sync %s rejected by provider, not retrying: %s",
                provider.PROVIDER_NAME, exc,
            )
            return
        except DirectorySyncError as exc:
            if attempt >= max_retries:
                logger.error(
                    "Sync %s failed after %d retries: %s",
                    provider.PROVIDER_NAME, max_retries, exc,
                )
                return
            delay = _retry_delay(exc, attempt)
            logger.warning(
                "Sync %s failed (attempt %d/%d), retrying in %ds: %s",
                provider.PROVIDER_NAME, attempt + 1, max_retries, delay, exc,
            )
            if cancel.wait(delay):
                return


def _on_job_error(event) -> None:
    """Log job execution errors."""
    logger.error(
        "Job %s raised an exception: %s",
        event.job_id,
        event.exception,
    )


def build_scheduler(
    provider: BaseProvider,
    config: SyncConfig,
    cancel: threading.Event,
) -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone=timezone.utc)
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_job(
        run_sync_cycle,
        "interval",
        minutes=config.scheduler.interval_min,
        args=[provider, config, cancel],
        id=provider.PROVIDER_NAME,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=config.scheduler.misfire_grace_time,
        next_run_time=datetime.now(timezone.utc),
    )
    return scheduler


def start_scheduler(provider: BaseProvider, config: SyncConfig) -> None:
    """Start the blocking scheduler; returns once it is shut down."""
    cancel = threading.Event()
    scheduler = build_scheduler(provider, config, cancel)
    logger.info("Starting scheduler with jobs: %s",
                [j.id for j in scheduler.get_jobs()])
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopping")
    finally:
        cancel.set()
