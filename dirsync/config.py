"""Configuration via environment variables with cloud-native secret support.

The Okta credential can be given directly (OKTA_API_KEY), as a secret
reference (aws-secret://..., gcp-secret://...), or as a base64-encoded JSON
service account (OKTA_SERVICE_ACCOUNT).
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from dirsync.errors import ConfigError
from dirsync.secrets import resolve_database_url, resolve_secret


@dataclass(frozen=True)
class ServiceAccount:
    api_key: str = field(repr=False)


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = field(repr=False)
    min_connections: int = 1
    max_connections: int = 4


@dataclass(frozen=True)
class OktaConfig:
    provider_url: str
    service_account: ServiceAccount
    batch_size: int = 200
    request_timeout: float = 30.0


@dataclass(frozen=True)
class SchedulerConfig:
    interval_min: int = 15
    misfire_grace_time: int = 300
    max_retries: int = 3


@dataclass(frozen=True)
class SyncConfig:
    okta: OktaConfig
    tenant_id: str = "default"
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    database: Optional[DatabaseConfig] = None
    membership_workers: int = 1
    full_resync_interval_hours: int = 24  # 0 disables forced full syncs


def parse_service_account(raw: str) -> ServiceAccount:
    """Decode a base64 JSON service account: {"api_key": "..."}."""
    try:
        data = json.loads(base64.b64decode(raw, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise ConfigError(f"invalid service account: {exc}") from exc
    if not isinstance(data, dict) or not data.get("api_key"):
        raise ConfigError("invalid service account: api_key is required")
    return ServiceAccount(api_key=resolve_secret(str(data["api_key"])))


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def load_config() -> SyncConfig:
    """Load configuration from environment variables (and a .env file, if any)."""
    load_dotenv()

    provider_url = os.environ.get("OKTA_PROVIDER_URL", "").strip()
    if not provider_url:
        raise ConfigError("OKTA_PROVIDER_URL environment variable is required")
    if not provider_url.startswith(("http://", "https://")):
        raise ConfigError(f"OKTA_PROVIDER_URL must be an http(s) URL, got {provider_url!r}")

    raw_sa = os.environ.get("OKTA_SERVICE_ACCOUNT", "")
    raw_key = os.environ.get("OKTA_API_KEY", "")
    if raw_sa:
        service_account = parse_service_account(raw_sa)
    elif raw_key:
        service_account = ServiceAccount(api_key=resolve_secret(raw_key))
    else:
        raise ConfigError("one of OKTA_API_KEY or OKTA_SERVICE_ACCOUNT is required")

    okta = OktaConfig(
        provider_url=provider_url.rstrip("/"),
        service_account=service_account,
        batch_size=_int_env("OKTA_BATCH_SIZE", 200),
        request_timeout=float(_int_env("OKTA_REQUEST_TIMEOUT", 30)),
    )

    # Run tracking is optional
    database = None
    db_url = resolve_database_url()
    if db_url:
        database = DatabaseConfig(
            url=db_url,
            min_connections=_int_env("DB_MIN_CONNECTIONS", 1),
            max_connections=_int_env("DB_MAX_CONNECTIONS", 4),
        )

    scheduler = SchedulerConfig(
        interval_min=_int_env("DIRSYNC_INTERVAL_MIN", 15),
        misfire_grace_time=_int_env("DIRSYNC_MISFIRE_GRACE", 300),
        max_retries=_int_env("DIRSYNC_MAX_RETRIES", 3),
    )

    workers = _int_env("DIRSYNC_MEMBERSHIP_WORKERS", 1)
    if workers < 1:
        raise ConfigError("DIRSYNC_MEMBERSHIP_WORKERS must be at least 1")

    return SyncConfig(
        okta=okta,
        tenant_id=os.environ.get("TENANT_ID", "default"),
        scheduler=scheduler,
        database=database,
        membership_workers=workers,
        full_resync_interval_hours=_int_env("DIRSYNC_FULL_RESYNC_HOURS", 24),
    )
