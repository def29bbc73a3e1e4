"""Tests for the in-process job store and its URL selection."""

import pytest

from delivery.jobs.job import JobState, SyncJob
from delivery.jobs.leases import OrderLeases
from delivery.jobs.policy import JobType
from delivery.jobs.store import MemoryJobStore, RedisJobStore, build_job_store


@pytest.fixture()
def store():
    return MemoryJobStore()


def _job(job_type=JobType.SYNC_WITH_PROVIDER, **payload):
    payload.setdefault("tenant_id", "t1")
    payload.setdefault("order_id", "o1")
    return SyncJob(type=job_type, payload=payload)


class TestStats:
    def test_transitions_move_the_counters(self, store):
        job = _job()
        store.add(job)
        assert store.stats(JobType.SYNC_WITH_PROVIDER) == {"waiting": 1, "active": 0, "completed": 0, "failed": 0}

        store.transition(job, JobState.ACTIVE)
        store.transition(job, JobState.DELAYED)
        store.transition(job, JobState.ACTIVE)
        store.transition(job, JobState.COMPLETED)

        assert store.stats(JobType.SYNC_WITH_PROVIDER) == {"waiting": 0, "active": 0, "completed": 1, "failed": 0}
        assert store.get(job.id).state == JobState.COMPLETED

    def test_cancelled_jobs_leave_the_counters(self, store):
        job = _job()
        store.add(job)
        store.transition(job, JobState.CANCELLED)
        assert store.stats(JobType.SYNC_WITH_PROVIDER) == {"waiting": 0, "active": 0, "completed": 0, "failed": 0}

    def test_types_are_counted_separately(self, store):
        store.add(_job())
        assert store.stats(JobType.CHECK_STATUS)["waiting"] == 0


class TestClaims:
    def test_first_claim_wins(self, store):
        assert store.claim("sync-with-provider:o1", "a") is None
        assert store.claim("sync-with-provider:o1", "b") == "a"
        assert store.claim("sync-with-provider:o1", "a") is None

    def test_release_only_by_the_holder(self, store):
        store.claim("k", "a")
        store.release_claim("k", "b")
        assert store.claim("k", "b") == "a"

        store.release_claim("k", "a")
        assert store.claim("k", "b") is None

    def test_reclaim_takes_over(self, store):
        store.claim("k", "a")
        store.reclaim("k", "b")
        assert store.claim("k", "c") == "b"


class TestLeases:
    def test_lease_is_exclusive_and_reentrant(self, store):
        leases = OrderLeases(store, ttl=60)
        assert leases.acquire("o1", "job-a")
        assert leases.acquire("o1", "job-a")
        assert not leases.acquire("o1", "job-b")
        assert leases.holder("o1") == "job-a"

    def test_release_by_another_holder_is_ignored(self, store):
        leases = OrderLeases(store)
        leases.acquire("o1", "job-a")
        leases.release("o1", "job-b")
        assert leases.holder("o1") == "job-a"

        leases.release("o1", "job-a")
        assert leases.holder("o1") is None


class TestTenantSlots:
    def test_slots_are_limited_per_tenant_and_type(self, store):
        assert store.enter_tenant(JobType.CHECK_STATUS, "t1", 1)
        assert not store.enter_tenant(JobType.CHECK_STATUS, "t1", 1)
        assert store.enter_tenant(JobType.CHECK_STATUS, "t2", 1)
        assert store.enter_tenant(JobType.SYNC_WITH_PROVIDER, "t1", 1)

        store.leave_tenant(JobType.CHECK_STATUS, "t1")
        assert store.enter_tenant(JobType.CHECK_STATUS, "t1", 1)

    def test_leaving_an_empty_slot_is_harmless(self, store):
        store.leave_tenant(JobType.CHECK_STATUS, "t1")
        assert store.enter_tenant(JobType.CHECK_STATUS, "t1", 1)


class TestCancelFlags:
    def test_flag_lifecycle(self, store):
        assert not store.cancel_requested("j1")
        store.request_cancel("j1")
        assert store.cancel_requested("j1")
        store.clear_cancel("j1")
        assert not store.cancel_requested("j1")


class TestJobRecord:
    def test_dict_form_restores_the_job(self):
        job = _job()
        job.attempts = 2
        job.last_error = "Timed out"

        restored = SyncJob.from_dict(job.to_dict())

        assert restored.to_dict() == job.to_dict()
        assert restored.lease_key == "o1"
        assert restored.coalesce_key == "sync-with-provider:o1"

    def test_bulk_check_coalesces_on_its_type(self):
        assert SyncJob(type=JobType.BULK_STATUS_CHECK, payload={}).coalesce_key == "bulk-status-check"
        assert SyncJob(type=JobType.UPDATE_ORDER, payload={"order_id": "o1"}).coalesce_key is None


class TestBuildJobStore:
    def test_memory_url(self):
        assert isinstance(build_job_store("memory://"), MemoryJobStore)

    def test_redis_url(self):
        # The client connects lazily
        assert isinstance(build_job_store("redis://localhost:6379/15"), RedisJobStore)

    def test_unknown_scheme(self):
        with pytest.raises(ValueError):
            build_job_store("sqlite:///jobs.db")
