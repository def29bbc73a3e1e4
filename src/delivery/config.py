"""Engine settings read from the environment.

Every tunable of the job orchestrator, the status reconciler and the
provider transport lives here so that workers and tests build their
components from one frozen value. Celery broker settings are read by
``delivery.jobs.celery_app``.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass


def _read(environ: Mapping[str, str], name: str, default, cast):
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        raise ValueError(f"{name} must be a {cast.__name__}, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


@dataclass(frozen=True)
class EngineSettings:
    job_attempts: int = 3
    job_backoff_delay: float = 5.0
    bulk_status_attempts: int = 1
    sync_pool_size: int = 5
    status_pool_size: int = 2
    persistence_pool_size: int = 5
    status_check_interval: float = 300.0
    status_batch_size: int = 10
    status_batch_pause: float = 1.0
    duplicate_window_hours: int = 24
    provider_timeout: float = 30.0
    status_scan_page_size: int = 500
    lease_ttl: float = 300.0
    lease_retry_delay: float = 1.0
    job_store_url: str = "memory://"
    credentials_key: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineSettings":
        env = os.environ if environ is None else environ
        return cls(
            job_attempts=_read(env, "JOB_ATTEMPTS", cls.job_attempts, int),
            job_backoff_delay=_read(env, "JOB_BACKOFF_DELAY", cls.job_backoff_delay, float),
            bulk_status_attempts=_read(env, "BULK_STATUS_ATTEMPTS", cls.bulk_status_attempts, int),
            sync_pool_size=_read(env, "SYNC_POOL_SIZE", cls.sync_pool_size, int),
            status_pool_size=_read(env, "STATUS_POOL_SIZE", cls.status_pool_size, int),
            persistence_pool_size=_read(env, "PERSISTENCE_POOL_SIZE", cls.persistence_pool_size, int),
            status_check_interval=_read(env, "STATUS_CHECK_INTERVAL", cls.status_check_interval, float),
            status_batch_size=_read(env, "STATUS_BATCH_SIZE", cls.status_batch_size, int),
            status_batch_pause=_read(env, "STATUS_BATCH_PAUSE", cls.status_batch_pause, float),
            duplicate_window_hours=_read(env, "DUPLICATE_WINDOW_HOURS", cls.duplicate_window_hours, int),
            provider_timeout=_read(env, "PROVIDER_TIMEOUT", cls.provider_timeout, float),
            status_scan_page_size=_read(env, "STATUS_SCAN_PAGE_SIZE", cls.status_scan_page_size, int),
            lease_ttl=_read(env, "ORDER_LEASE_TTL", cls.lease_ttl, float),
            lease_retry_delay=_read(env, "LEASE_RETRY_DELAY", cls.lease_retry_delay, float),
            job_store_url=env.get("JOB_STORE_URL") or cls.job_store_url,
            credentials_key=env.get("PROVIDER_CREDENTIALS_KEY") or None,
        )
