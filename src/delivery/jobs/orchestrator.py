"""Job orchestrator — named job types run by Celery workers.

    create-order, update-order   persistence triggers (no provider call)
    sync-with-provider           dispatch one confirmed order to its provider
    check-status                 refresh one order's status
    bulk-status-check            status reconciler run; singleton

Submitting records the job in the job store and publishes it to the queue of
its type. A submission for an order that already has an unfinished job of the
same type returns that job; the bulk check coalesces every submission into
the unfinished one.

``execute`` runs one attempt of a job inside a worker. It holds the order's
lease and a tenant slot for the duration of the handler, turns the handler's
outcome into the next state and reports whether the job must run again.
Jobs that fail terminally or exhaust their attempts are persisted as dead
letters; an exhausted dispatch additionally marks the order's sync as failed.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from delivery.config import EngineSettings
from delivery.jobs import tasks
from delivery.jobs.dead_letter import record_dead_letter
from delivery.jobs.dispatch import ParcelDispatcher
from delivery.jobs.job import JobState, SyncJob
from delivery.jobs.leases import OrderLeases
from delivery.jobs.policy import JobType, policies_from, pool_sizes, tenant_share
from delivery.jobs.reconciler import StatusReconciler
from delivery.jobs.status import StatusChecker
from delivery.jobs.store import JobStore, build_job_store
from delivery.order.queries import find_pending_sync
from delivery.order.registration import RegisterOrder
from delivery.order.sync import MarkSyncFailed
from delivery.order.update import UpdateOrder
from delivery.provider.outcome import Outcome, RetryableFailure, Succeeded, TerminalFailure
from delivery.utils.logging import add_context, clear_context

logger = structlog.get_logger(__name__)

_JOB_CONTEXT = ("job_id", "job_type", "order_id", "tenant_id")


@dataclass(frozen=True)
class JobStep:
    """What a worker does after one delivery of a job's task."""

    job: SyncJob | None
    retry_in: float | None = None  # attempt failed, run again after backoff
    requeue_in: float | None = None  # could not start, run again without spending an attempt


class JobOrchestrator:
    def __init__(
        self,
        settings: EngineSettings | None = None,
        registry=None,
        store: JobStore | None = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        if registry is None:
            from delivery.provider import get_registry

            registry = get_registry()
        self.settings = settings or EngineSettings.from_env()
        self.registry = registry
        self.store = store or build_job_store(self.settings.job_store_url)
        self.leases = OrderLeases(self.store, ttl=self.settings.lease_ttl)
        self.policies = policies_from(self.settings)
        self.pools = pool_sizes(self.settings)
        self.dispatcher = ParcelDispatcher(registry)
        self.status_checker = StatusChecker(registry)
        self.reconciler = StatusReconciler(
            self.status_checker,
            self.leases,
            batch_size=self.settings.status_batch_size,
            pause=self.settings.status_batch_pause,
            page_size=self.settings.status_scan_page_size,
            sleep=sleep,
        )
        self._handlers = {
            JobType.CREATE_ORDER: self._create_order,
            JobType.UPDATE_ORDER: self._update_order,
            JobType.SYNC_WITH_PROVIDER: self.dispatcher.dispatch,
            JobType.CHECK_STATUS: self.status_checker.check,
            JobType.BULK_STATUS_CHECK: self._bulk_status_check,
        }

    # -------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------
    def submit(self, job_type: JobType | str, payload: dict, *, priority: int = 0, delay: float = 0.0) -> SyncJob:
        job = SyncJob(
            type=JobType(job_type),
            payload=dict(payload),
            priority=priority,
            state=JobState.DELAYED if delay > 0 else JobState.WAITING,
        )
        key = job.coalesce_key
        if key is not None:
            holder_id = self.store.claim(key, job.id)
            if holder_id is not None:
                existing = self.store.get(holder_id)
                if existing is not None and not existing.finished:
                    logger.info(
                        "job_coalesced",
                        job_type=job.type.value,
                        job_id=existing.id,
                        order_id=job.order_id,
                    )
                    return existing
                self.store.reclaim(key, job.id)

        self.store.add(job)
        logger.debug("job_submitted", job_type=job.type.value, job_id=job.id, priority=priority, delay=delay)
        tasks.publish(job, countdown=delay)
        return self.store.get(job.id) or job

    def get_job(self, job_id: str) -> SyncJob | None:
        return self.store.get(job_id)

    def cancel(self, job_id: str) -> bool:
        """Cancel a job. A running attempt is never interrupted; it just won't be retried."""
        job = self.store.get(job_id)
        if job is None or job.finished:
            return False
        if job.state == JobState.ACTIVE:
            self.store.request_cancel(job.id)
            logger.info("job_cancel_requested", job_type=job.type.value, job_id=job.id)
            return True
        self._finish(job, JobState.CANCELLED)
        logger.info("job_cancelled", job_type=job.type.value, job_id=job.id, attempts=job.attempts)
        return True

    def get_queue_stats(self) -> dict[str, dict[str, int]]:
        return {job_type.value: self.store.stats(job_type) for job_type in JobType}

    def register_order(self, payload: dict, priority: int = 0) -> SyncJob:
        return self.submit(JobType.CREATE_ORDER, payload, priority=priority)

    def update_order(self, order_id: str, tenant_id: str, patch: dict) -> SyncJob:
        return self.submit(JobType.UPDATE_ORDER, {"order_id": order_id, "tenant_id": tenant_id, "patch": patch})

    def dispatch(self, order_id: str, tenant_id: str, provider_slug: str | None = None, **options) -> SyncJob:
        payload = {"order_id": order_id, "tenant_id": tenant_id, "provider_slug": provider_slug}
        return self.submit(JobType.SYNC_WITH_PROVIDER, payload, **options)

    def check_status(self, order_id: str, tenant_id: str, **options) -> SyncJob:
        return self.submit(JobType.CHECK_STATUS, {"order_id": order_id, "tenant_id": tenant_id}, **options)

    def trigger_bulk_status_check(self) -> SyncJob:
        return self.submit(JobType.BULK_STATUS_CHECK, {})

    def enqueue_pending_dispatches(self, tenant_id: str, limit: int = 100) -> list[SyncJob]:
        """Queue a dispatch for every confirmed order still waiting for its provider."""
        jobs = [
            self.dispatch(str(order.id), str(order.tenant_id), order.provider_slug)
            for order in find_pending_sync(tenant_id, limit=limit)
        ]
        logger.info("pending_dispatches_enqueued", tenant_id=str(tenant_id), count=len(jobs))
        return jobs

    # -------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------
    async def execute(self, job_id: str) -> JobStep:
        job = self.store.get(job_id)
        if job is None:
            logger.warning("job_unknown", job_id=job_id)
            return JobStep(None)
        if job.finished:
            logger.debug("job_already_finished", job_id=job.id, state=job.state.value)
            return JobStep(job)
        if not self._begin(job):
            return JobStep(job, requeue_in=self.settings.lease_retry_delay)

        add_context(job_id=job.id, job_type=job.type.value, order_id=job.order_id, tenant_id=job.tenant_id)
        try:
            try:
                outcome = await self._handlers[job.type](job)
            except Exception as exc:
                logger.exception("job_crashed", attempt=job.attempts)
                outcome = RetryableFailure(error=str(exc) or exc.__class__.__name__, kind=exc.__class__.__name__)
            finally:
                self._end(job)
            return self._settle(job, outcome)
        finally:
            clear_context(*_JOB_CONTEXT)

    def _begin(self, job: SyncJob) -> bool:
        lease_key = job.lease_key
        if lease_key is not None and not self.leases.acquire(lease_key, job.id):
            logger.debug("job_parked", job_id=job.id, reason="order_leased")
            return False
        tenant = job.tenant_id
        if tenant and not self.store.enter_tenant(job.type, tenant, tenant_share(self.pools[job.type])):
            if lease_key is not None:
                self.leases.release(lease_key, job.id)
            logger.debug("job_parked", job_id=job.id, reason="tenant_share", tenant_id=tenant)
            return False
        job.attempts += 1
        self.store.transition(job, JobState.ACTIVE)
        return True

    def _end(self, job: SyncJob) -> None:
        if job.tenant_id:
            self.store.leave_tenant(job.type, job.tenant_id)
        if job.lease_key is not None:
            self.leases.release(job.lease_key, job.id)

    def _settle(self, job: SyncJob, outcome: Outcome) -> JobStep:
        if isinstance(outcome, Succeeded):
            job.result = outcome.value
            job.last_error = None
            self._finish(job, JobState.COMPLETED)
            logger.info("job_completed", attempts=job.attempts)
            return JobStep(job)

        job.last_error = outcome.error
        policy = self.policies[job.type]
        if isinstance(outcome, RetryableFailure) and policy.can_retry(job.attempts):
            if self.store.cancel_requested(job.id):
                self._finish(job, JobState.CANCELLED)
                logger.info("job_cancelled", attempts=job.attempts)
                return JobStep(job)
            delay = policy.delay_for(job.attempts)
            self.store.transition(job, JobState.DELAYED)
            logger.warning("job_retry_scheduled", attempt=job.attempts, delay=delay, error=outcome.error, kind=outcome.kind)
            return JobStep(job, retry_in=delay)

        logger.error("job_dead_lettered", attempts=job.attempts, error=outcome.error, kind=outcome.kind)
        try:
            self._dead_letter(job, outcome)
        except Exception:
            logger.exception("dead_letter_failed")
        self._finish(job, JobState.FAILED)
        return JobStep(job)

    def _finish(self, job: SyncJob, state: JobState) -> None:
        self.store.transition(job, state)
        if job.coalesce_key is not None:
            self.store.release_claim(job.coalesce_key, job.id)
        self.store.clear_cancel(job.id)

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------
    async def _create_order(self, job: SyncJob) -> Outcome:
        payload = dict(job.payload)
        if not isinstance(payload.get("items"), str):
            payload["items"] = json.dumps(payload.get("items") or [])
        payload.setdefault("duplicate_window_hours", self.settings.duplicate_window_hours)
        try:
            registration = current_domain.process(RegisterOrder(**payload), asynchronous=False)
        except ValidationError as exc:
            return TerminalFailure(error=str(exc.messages), kind=type(exc).__name__)
        logger.info(
            "order_registered",
            order_id=registration.order_id,
            order_number=registration.order_number,
            duplicate_candidates=registration.duplicate.count if registration.duplicate else 0,
        )
        return Succeeded(registration)

    async def _update_order(self, job: SyncJob) -> Outcome:
        patch = job.payload.get("patch") or {}
        try:
            order = current_domain.process(
                UpdateOrder(
                    order_id=job.payload["order_id"],
                    tenant_id=job.payload["tenant_id"],
                    patch=patch if isinstance(patch, str) else json.dumps(patch),
                ),
                asynchronous=False,
            )
        except (ValidationError, ObjectNotFoundError) as exc:
            error = str(exc.messages) if isinstance(exc, ValidationError) else str(exc)
            return TerminalFailure(error=error, kind=type(exc).__name__)
        return Succeeded(str(order.id))

    async def _bulk_status_check(self, job: SyncJob) -> Outcome:
        return Succeeded(await self.reconciler.run())

    def _dead_letter(self, job: SyncJob, failure) -> None:
        record_dead_letter(job, failure)
        if job.type == JobType.SYNC_WITH_PROVIDER and job.order_id:
            current_domain.process(
                MarkSyncFailed(
                    order_id=job.order_id,
                    tenant_id=job.tenant_id,
                    provider=job.payload.get("provider_slug"),
                    error=failure.error,
                ),
                asynchronous=False,
            )


_orchestrator: JobOrchestrator | None = None


def get_orchestrator() -> JobOrchestrator:
    """Return the process-wide orchestrator, built from the environment on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = JobOrchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: JobOrchestrator) -> None:
    global _orchestrator
    _orchestrator = orchestrator


def reset_orchestrator() -> None:
    global _orchestrator
    _orchestrator = None
