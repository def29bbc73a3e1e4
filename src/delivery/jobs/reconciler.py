"""Status reconciler — the bulk-status-check routine.

Selects every order with a tracking number and a non-terminal status, splits
them into fixed-size batches and checks each batch concurrently, pausing
between batches. Batches run one after the other, so no more than
``batch_size`` provider calls are ever in flight. Orders whose lease is held
by a dispatch or single status check are skipped for this run.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from delivery.jobs.job import Skipped
from delivery.jobs.leases import OrderLeases
from delivery.jobs.status import StatusChecker, StatusUpdate
from delivery.order.queries import find_pending_status_updates
from delivery.provider.outcome import Outcome, RetryableFailure, Succeeded

logger = structlog.get_logger(__name__)


@dataclass
class ReconcileReport:
    candidates: int = 0
    batches: int = 0
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


class StatusReconciler:
    def __init__(
        self,
        checker: StatusChecker,
        leases: OrderLeases,
        batch_size: int = 10,
        pause: float = 1.0,
        page_size: int = 500,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.checker = checker
        self.leases = leases
        self.batch_size = batch_size
        self.pause = pause
        self.page_size = page_size
        self._sleep = sleep

    async def run(self) -> ReconcileReport:
        orders = find_pending_status_updates(self.page_size)
        report = ReconcileReport(candidates=len(orders))
        batches = [orders[start : start + self.batch_size] for start in range(0, len(orders), self.batch_size)]

        for index, batch in enumerate(batches):
            if index:
                await self._sleep(self.pause)
            outcomes = await asyncio.gather(*(self._check(order) for order in batch))
            report.batches += 1
            for outcome in outcomes:
                self._tally(report, outcome)
            logger.debug("status_batch_completed", batch=index + 1, size=len(batch))

        logger.info(
            "bulk_status_check_completed",
            candidates=report.candidates,
            batches=report.batches,
            updated=report.updated,
            skipped=report.skipped,
            errors=report.errors,
        )
        return report

    async def _check(self, order) -> Outcome:
        order_id = str(order.id)
        holder = f"bulk:{order_id}"
        if not self.leases.acquire(order_id, holder):
            return Succeeded(Skipped("Another job holds the order"))
        try:
            return await self.checker.check_order(order)
        except Exception as exc:
            logger.exception("status_check_crashed", order_id=order_id)
            return RetryableFailure(error=str(exc) or exc.__class__.__name__, kind=exc.__class__.__name__)
        finally:
            self.leases.release(order_id, holder)

    @staticmethod
    def _tally(report: ReconcileReport, outcome: Outcome) -> None:
        if not isinstance(outcome, Succeeded):
            report.errors += 1
            return
        if isinstance(outcome.value, Skipped):
            report.skipped += 1
            return
        report.processed += 1
        if isinstance(outcome.value, StatusUpdate) and outcome.value.applied:
            report.updated += 1
