"""Job bookkeeping shared by every process that submits or runs jobs.

The store keeps what Celery does not: job records, the per-type queue
statistics, coalescing claims, per-order leases and per-tenant worker slots.

``MemoryJobStore`` serves a single process (eager runs, development).
``RedisJobStore`` serves a fleet of Celery workers; its claims and leases use
``SET NX`` so that two workers can never both hold one.
"""

import json
import threading
from collections import Counter

import redis
import structlog

from delivery.jobs.job import STAT_BUCKETS, JobState, SyncJob
from delivery.jobs.policy import JobType

logger = structlog.get_logger(__name__)

STAT_NAMES = ("waiting", "active", "completed", "failed")


class JobStore:
    """Interface of the job store."""

    def add(self, job: SyncJob) -> None:
        raise NotImplementedError

    def get(self, job_id: str) -> SyncJob | None:
        raise NotImplementedError

    def save(self, job: SyncJob) -> None:
        raise NotImplementedError

    def transition(self, job: SyncJob, state: JobState) -> None:
        """Move ``job`` to ``state``, keeping the queue statistics in step."""
        raise NotImplementedError

    def stats(self, job_type: JobType) -> dict[str, int]:
        raise NotImplementedError

    def request_cancel(self, job_id: str) -> None:
        """Flag a running job so that it is not retried."""
        raise NotImplementedError

    def cancel_requested(self, job_id: str) -> bool:
        raise NotImplementedError

    def clear_cancel(self, job_id: str) -> None:
        raise NotImplementedError

    def claim(self, key: str, job_id: str) -> str | None:
        """Claim ``key`` for ``job_id``; return the current holder if another job has it."""
        raise NotImplementedError

    def reclaim(self, key: str, job_id: str) -> None:
        raise NotImplementedError

    def release_claim(self, key: str, job_id: str) -> None:
        raise NotImplementedError

    def acquire_lease(self, order_id: str, holder: str, ttl: float) -> bool:
        raise NotImplementedError

    def release_lease(self, order_id: str, holder: str) -> None:
        raise NotImplementedError

    def lease_holder(self, order_id: str) -> str | None:
        raise NotImplementedError

    def enter_tenant(self, job_type: JobType, tenant_id: str, limit: int) -> bool:
        """Take one of the ``limit`` worker slots the tenant may use for ``job_type``."""
        raise NotImplementedError

    def leave_tenant(self, job_type: JobType, tenant_id: str) -> None:
        raise NotImplementedError


class MemoryJobStore(JobStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: dict[str, SyncJob] = {}
        self._stats: dict[JobType, Counter] = {job_type: Counter() for job_type in JobType}
        self._claims: dict[str, str] = {}
        self._leases: dict[str, str] = {}
        self._tenants: Counter = Counter()
        self._cancelled: set[str] = set()

    def add(self, job: SyncJob) -> None:
        with self._lock:
            self._jobs[job.id] = job
            bucket = STAT_BUCKETS.get(job.state)
            if bucket:
                self._stats[job.type][bucket] += 1

    def get(self, job_id: str) -> SyncJob | None:
        return self._jobs.get(job_id)

    def save(self, job: SyncJob) -> None:
        with self._lock:
            self._jobs[job.id] = job

    def transition(self, job: SyncJob, state: JobState) -> None:
        with self._lock:
            before, after = STAT_BUCKETS.get(job.state), STAT_BUCKETS.get(state)
            if before:
                self._stats[job.type][before] -= 1
            if after:
                self._stats[job.type][after] += 1
            job.state = state
            self._jobs[job.id] = job

    def stats(self, job_type: JobType) -> dict[str, int]:
        counts = self._stats[job_type]
        return {name: counts[name] for name in STAT_NAMES}

    def request_cancel(self, job_id: str) -> None:
        with self._lock:
            self._cancelled.add(job_id)

    def cancel_requested(self, job_id: str) -> bool:
        return job_id in self._cancelled

    def clear_cancel(self, job_id: str) -> None:
        with self._lock:
            self._cancelled.discard(job_id)

    def claim(self, key: str, job_id: str) -> str | None:
        with self._lock:
            holder = self._claims.setdefault(key, job_id)
        return None if holder == job_id else holder

    def reclaim(self, key: str, job_id: str) -> None:
        with self._lock:
            self._claims[key] = job_id

    def release_claim(self, key: str, job_id: str) -> None:
        with self._lock:
            if self._claims.get(key) == job_id:
                del self._claims[key]

    def acquire_lease(self, order_id: str, holder: str, ttl: float) -> bool:
        with self._lock:
            current = self._leases.setdefault(order_id, holder)
        return current == holder

    def release_lease(self, order_id: str, holder: str) -> None:
        with self._lock:
            if self._leases.get(order_id) == holder:
                del self._leases[order_id]

    def lease_holder(self, order_id: str) -> str | None:
        return self._leases.get(order_id)

    def enter_tenant(self, job_type: JobType, tenant_id: str, limit: int) -> bool:
        key = (job_type, tenant_id)
        with self._lock:
            if self._tenants[key] >= limit:
                return False
            self._tenants[key] += 1
        return True

    def leave_tenant(self, job_type: JobType, tenant_id: str) -> None:
        key = (job_type, tenant_id)
        with self._lock:
            if self._tenants[key] > 0:
                self._tenants[key] -= 1


# Delete KEYS[1] only while it still holds ARGV[1]
_COMPARE_AND_DELETE = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# Take a slot unless the counter is already at ARGV[1]
_ENTER_SLOT = """
local taken = redis.call("incr", KEYS[1])
if taken > tonumber(ARGV[1]) then
    redis.call("decr", KEYS[1])
    return 0
end
redis.call("expire", KEYS[1], ARGV[2])
return 1
"""


class RedisJobStore(JobStore):
    """Job store on Redis; job records expire after ``record_ttl`` seconds."""

    def __init__(self, client: redis.Redis, prefix: str = "parcelsync", record_ttl: int = 7 * 24 * 3600):
        self.client = client
        self.prefix = prefix
        self.record_ttl = record_ttl
        self._compare_and_delete = client.register_script(_COMPARE_AND_DELETE)
        self._enter_slot = client.register_script(_ENTER_SLOT)

    @classmethod
    def from_url(cls, url: str, **options) -> "RedisJobStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), **options)

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix, *parts))

    def _write(self, pipe, job: SyncJob) -> None:
        pipe.set(self._key("job", job.id), json.dumps(job.to_dict(), default=str), ex=self.record_ttl)

    def add(self, job: SyncJob) -> None:
        with self.client.pipeline() as pipe:
            self._write(pipe, job)
            bucket = STAT_BUCKETS.get(job.state)
            if bucket:
                pipe.hincrby(self._key("stats", job.type.value), bucket, 1)
            pipe.execute()

    def get(self, job_id: str) -> SyncJob | None:
        raw = self.client.get(self._key("job", job_id))
        return SyncJob.from_dict(json.loads(raw)) if raw else None

    def save(self, job: SyncJob) -> None:
        with self.client.pipeline() as pipe:
            self._write(pipe, job)
            pipe.execute()

    def transition(self, job: SyncJob, state: JobState) -> None:
        before, after = STAT_BUCKETS.get(job.state), STAT_BUCKETS.get(state)
        job.state = state
        stats_key = self._key("stats", job.type.value)
        with self.client.pipeline() as pipe:
            self._write(pipe, job)
            if before:
                pipe.hincrby(stats_key, before, -1)
            if after:
                pipe.hincrby(stats_key, after, 1)
            pipe.execute()

    def stats(self, job_type: JobType) -> dict[str, int]:
        counts = self.client.hgetall(self._key("stats", job_type.value))
        return {name: max(int(counts.get(name, 0)), 0) for name in STAT_NAMES}

    def request_cancel(self, job_id: str) -> None:
        self.client.set(self._key("cancel", job_id), 1, ex=self.record_ttl)

    def cancel_requested(self, job_id: str) -> bool:
        return bool(self.client.exists(self._key("cancel", job_id)))

    def clear_cancel(self, job_id: str) -> None:
        self.client.delete(self._key("cancel", job_id))

    def claim(self, key: str, job_id: str) -> str | None:
        claim_key = self._key("claim", key)
        if self.client.set(claim_key, job_id, nx=True, ex=self.record_ttl):
            return None
        holder = self.client.get(claim_key)
        return None if holder in (None, job_id) else holder

    def reclaim(self, key: str, job_id: str) -> None:
        self.client.set(self._key("claim", key), job_id, ex=self.record_ttl)

    def release_claim(self, key: str, job_id: str) -> None:
        self._compare_and_delete(keys=[self._key("claim", key)], args=[job_id])

    def acquire_lease(self, order_id: str, holder: str, ttl: float) -> bool:
        lease_key = self._key("lease", order_id)
        if self.client.set(lease_key, holder, nx=True, px=max(int(ttl * 1000), 1)):
            return True
        return self.client.get(lease_key) == holder

    def release_lease(self, order_id: str, holder: str) -> None:
        self._compare_and_delete(keys=[self._key("lease", order_id)], args=[holder])

    def lease_holder(self, order_id: str) -> str | None:
        return self.client.get(self._key("lease", order_id))

    def enter_tenant(self, job_type: JobType, tenant_id: str, limit: int) -> bool:
        slot_key = self._key("tenant", job_type.value, tenant_id)
        return bool(self._enter_slot(keys=[slot_key], args=[limit, self.record_ttl]))

    def leave_tenant(self, job_type: JobType, tenant_id: str) -> None:
        slot_key = self._key("tenant", job_type.value, tenant_id)
        if self.client.decr(slot_key) < 0:
            self.client.set(slot_key, 0, ex=self.record_ttl)


def build_job_store(url: str) -> JobStore:
    if url.startswith("memory://"):
        return MemoryJobStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        logger.info("job_store_connected", backend="redis")
        return RedisJobStore.from_url(url)
    raise ValueError(f"JOB_STORE_URL must be memory:// or a redis URL, got {url!r}")
