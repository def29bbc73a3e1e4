"""Job types, their retry policies and worker pool sizes.

Each job type has its own Celery queue; the worker consuming it runs with
the type's pool size as concurrency.
"""

from dataclasses import dataclass
from enum import Enum

from delivery.config import EngineSettings


class JobType(Enum):
    CREATE_ORDER = "create-order"
    UPDATE_ORDER = "update-order"
    SYNC_WITH_PROVIDER = "sync-with-provider"
    CHECK_STATUS = "check-status"
    BULK_STATUS_CHECK = "bulk-status-check"


# Job types that act on a single order and must not overlap for that order
ORDER_EXCLUSIVE_TYPES = frozenset({JobType.SYNC_WITH_PROVIDER, JobType.CHECK_STATUS})

# At most one unfinished job of these types exists at a time
SINGLETON_TYPES = frozenset({JobType.BULK_STATUS_CHECK})


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay * 2 ** (failures - 1)`` seconds."""

    max_attempts: int = 3
    base_delay: float = 5.0

    def delay_for(self, failures: int) -> float:
        return self.base_delay * (2 ** max(failures - 1, 0))

    def can_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts


def policies_from(settings: EngineSettings) -> dict[JobType, RetryPolicy]:
    standard = RetryPolicy(max_attempts=settings.job_attempts, base_delay=settings.job_backoff_delay)
    return {
        JobType.CREATE_ORDER: standard,
        JobType.UPDATE_ORDER: standard,
        JobType.SYNC_WITH_PROVIDER: standard,
        JobType.CHECK_STATUS: standard,
        # Re-triggered by its own schedule
        JobType.BULK_STATUS_CHECK: RetryPolicy(
            max_attempts=settings.bulk_status_attempts,
            base_delay=settings.job_backoff_delay,
        ),
    }


def pool_sizes(settings: EngineSettings) -> dict[JobType, int]:
    return {
        JobType.CREATE_ORDER: settings.persistence_pool_size,
        JobType.UPDATE_ORDER: settings.persistence_pool_size,
        JobType.SYNC_WITH_PROVIDER: settings.sync_pool_size,
        JobType.CHECK_STATUS: settings.status_pool_size,
        JobType.BULK_STATUS_CHECK: 1,
    }


def tenant_share(pool_size: int) -> int:
    """Workers of one pool a single tenant may occupy at once.

    One tenant never takes the last free worker, so a backlog from one
    tenant leaves room for the others.
    """
    return max(pool_size - 1, 1)
