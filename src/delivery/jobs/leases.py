"""Per-order leases held for the duration of a job touching that order."""

import structlog

from delivery.jobs.store import JobStore, MemoryJobStore

logger = structlog.get_logger(__name__)


class OrderLeases:
    def __init__(self, store: JobStore | None = None, ttl: float = 300.0):
        self.store = store or MemoryJobStore()
        self.ttl = ttl

    def acquire(self, order_id: str, holder: str) -> bool:
        if self.store.acquire_lease(order_id, holder, self.ttl):
            return True
        logger.debug("order_lease_busy", order_id=order_id, holder=self.holder(order_id), requested_by=holder)
        return False

    def release(self, order_id: str, holder: str) -> None:
        self.store.release_lease(order_id, holder)

    def holder(self, order_id: str) -> str | None:
        return self.store.lease_holder(order_id)
