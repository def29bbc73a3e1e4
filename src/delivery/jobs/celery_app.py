"""Celery application for the delivery job types.

Every job type has its own queue. A worker consumes one queue with the type's
pool size as its concurrency (``python src/worker.py worker <job-type>``), so
pools are sized independently. Tasks are acknowledged late and prefetched one
at a time, so a job is never parked inside a busy worker.

CELERY_ALWAYS_EAGER=1 runs submitted jobs in the submitting process, which is
how development shells and tests run them without a broker.
"""

import os

from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown

from delivery.jobs.policy import JobType

BROKER_URL = os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0"))

TASK_NAMES = {job_type: f"delivery.{job_type.value}" for job_type in JobType}

celery = Celery("parcelsync", broker=BROKER_URL, include=["delivery.jobs.tasks"])

celery.conf.task_routes = {name: {"queue": job_type.value} for job_type, name in TASK_NAMES.items()}
celery.conf.task_serializer = "json"
celery.conf.accept_content = ["json"]
# Job outcomes live in the job store
celery.conf.task_ignore_result = True
celery.conf.task_acks_late = True
celery.conf.worker_prefetch_multiplier = 1
# Redis serves priority 0 first, matching the job priority convention
celery.conf.broker_transport_options = {
    "visibility_timeout": 3600,
    "priority_steps": list(range(10)),
    "queue_order_strategy": "priority",
}

if os.getenv("CELERY_ALWAYS_EAGER") == "1":
    celery.conf.task_always_eager = True


@worker_process_init.connect
def _on_worker_process_init(**_):
    from delivery.domain import delivery

    delivery.init()


@worker_process_shutdown.connect
def _on_worker_process_shutdown(**_):
    from delivery.jobs.tasks import run_async
    from delivery.provider import get_registry

    run_async(get_registry().aclose())
