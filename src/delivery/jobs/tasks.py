"""Celery tasks, one per job type.

A task carries only the job id; the job record lives in the job store. Each
delivery of the task runs one attempt through ``JobOrchestrator.execute``:

    - a retryable failure is rescheduled with ``Task.retry`` after the
      policy's backoff; the attempt ceiling is counted on the job record,
      so Celery's own ``max_retries`` is lifted;
    - a job that finds its order leased, or its tenant at its share of the
      pool, is published again without spending an attempt;
    - a finished or cancelled job is acknowledged and dropped.
"""

import asyncio
import threading

import structlog

from delivery.jobs.celery_app import TASK_NAMES, celery
from delivery.jobs.policy import JobType

logger = structlog.get_logger(__name__)

_local = threading.local()


def run_async(coro):
    """Run ``coro`` on this thread's long-lived event loop.

    Cached adapters keep httpx clients bound to the loop that opened them,
    so all jobs of a worker process share one loop.
    """
    loop = getattr(_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = _local.loop = asyncio.new_event_loop()
    return loop.run_until_complete(coro)


def _broker_priority(priority: int) -> int:
    return min(max(int(priority), 0), 9)


def _run(task, job_id: str) -> str | None:
    from delivery.domain import delivery
    from delivery.jobs.orchestrator import get_orchestrator

    with delivery.domain_context():
        step = run_async(get_orchestrator().execute(job_id))

    if step.job is None:
        return None
    if step.requeue_in is not None:
        task.apply_async(
            args=(job_id,),
            task_id=job_id,
            countdown=step.requeue_in,
            priority=_broker_priority(step.job.priority),
        )
        return step.job.state.value
    if step.retry_in is not None:
        raise task.retry(countdown=step.retry_in)
    return step.job.state.value


@celery.task(bind=True, name=TASK_NAMES[JobType.CREATE_ORDER], max_retries=None)
def create_order(self, job_id: str):
    return _run(self, job_id)


@celery.task(bind=True, name=TASK_NAMES[JobType.UPDATE_ORDER], max_retries=None)
def update_order(self, job_id: str):
    return _run(self, job_id)


@celery.task(bind=True, name=TASK_NAMES[JobType.SYNC_WITH_PROVIDER], max_retries=None)
def sync_with_provider(self, job_id: str):
    return _run(self, job_id)


@celery.task(bind=True, name=TASK_NAMES[JobType.CHECK_STATUS], max_retries=None)
def check_status(self, job_id: str):
    return _run(self, job_id)


@celery.task(bind=True, name=TASK_NAMES[JobType.BULK_STATUS_CHECK], max_retries=None)
def bulk_status_check(self, job_id: str):
    return _run(self, job_id)


TASKS = {
    JobType.CREATE_ORDER: create_order,
    JobType.UPDATE_ORDER: update_order,
    JobType.SYNC_WITH_PROVIDER: sync_with_provider,
    JobType.CHECK_STATUS: check_status,
    JobType.BULK_STATUS_CHECK: bulk_status_check,
}


def publish(job, countdown: float | None = None) -> None:
    """Send ``job`` to the queue of its type."""
    options = {"task_id": job.id, "priority": _broker_priority(job.priority)}
    if countdown:
        options["countdown"] = countdown
    TASKS[job.type].apply_async(args=(job.id,), **options)
    logger.debug("job_published", job_type=job.type.value, job_id=job.id, queue=job.type.value)
