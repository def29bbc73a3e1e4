"""Delivery sync processes.

``worker`` runs a Celery worker for one job type, consuming that type's queue
with the type's pool size as concurrency. ``scheduler`` fires the recurring
bulk-status-check trigger and queues pending dispatches at startup.

Workers and the scheduler share job bookkeeping through JOB_STORE_URL, which
must point at Redis once they run as separate processes.

Usage:
    python src/worker.py worker sync-with-provider
    python src/worker.py worker check-status --loglevel debug
    python src/worker.py scheduler                       # interval from STATUS_CHECK_INTERVAL
    python src/worker.py scheduler --interval 60 --tenant t-1 --tenant t-2
"""

import argparse
import asyncio
import signal

import structlog

logger = structlog.get_logger("worker")


def run_worker(job_type, loglevel):
    from delivery.config import EngineSettings
    from delivery.jobs.celery_app import celery
    from delivery.jobs.policy import JobType, pool_sizes

    settings = EngineSettings.from_env()
    job_type = JobType(job_type)
    if settings.job_store_url.startswith("memory://"):
        logger.warning("job_store_not_shared", job_store_url=settings.job_store_url)

    celery.worker_main(
        [
            "worker",
            "--queues",
            job_type.value,
            "--concurrency",
            str(pool_sizes(settings)[job_type]),
            "--prefetch-multiplier",
            "1",
            "--hostname",
            f"{job_type.value}@%h",
            "--loglevel",
            loglevel,
        ]
    )


async def run_scheduler(interval, tenants):
    from delivery.config import EngineSettings
    from delivery.domain import delivery
    from delivery.jobs.orchestrator import get_orchestrator
    from delivery.jobs.scheduler import StatusCheckScheduler
    from delivery.provider import get_registry
    from delivery.utils.db import setup_db

    delivery.init()
    setup_db(delivery)

    with delivery.domain_context():
        settings = EngineSettings.from_env()
        orchestrator = get_orchestrator()
        scheduler = StatusCheckScheduler(orchestrator, interval or settings.status_check_interval)

        scheduler.start(run_immediately=True)
        for tenant_id in tenants:
            orchestrator.enqueue_pending_dispatches(tenant_id)

        stopping = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stopping.set)

        try:
            await stopping.wait()
        finally:
            scheduler.shutdown()
            await get_registry().aclose()


def main():
    from delivery.jobs.policy import JobType

    parser = argparse.ArgumentParser(description="Delivery provider sync processes")
    commands = parser.add_subparsers(dest="command", required=True)

    worker = commands.add_parser("worker", help="Run the Celery worker of one job type")
    worker.add_argument("job_type", choices=[job_type.value for job_type in JobType])
    worker.add_argument("--loglevel", default="info")

    scheduler = commands.add_parser("scheduler", help="Run the bulk status check trigger")
    scheduler.add_argument(
        "--interval",
        type=float,
        help="Seconds between bulk status checks (default: STATUS_CHECK_INTERVAL)",
    )
    scheduler.add_argument(
        "--tenant",
        action="append",
        default=[],
        help="Queue pending dispatches for this tenant at startup (repeatable)",
    )
    args = parser.parse_args()

    if args.command == "worker":
        run_worker(args.job_type, args.loglevel)
    else:
        asyncio.run(run_scheduler(args.interval, args.tenant))


if __name__ == "__main__":
    main()
