"""SyncJob — the bookkeeping record of one submitted job."""

from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from delivery.jobs.policy import ORDER_EXCLUSIVE_TYPES, SINGLETON_TYPES, JobType


class JobState(Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATES = frozenset({JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED})

# Queue statistics bucket of each state; cancelled jobs are not counted
STAT_BUCKETS = {
    JobState.WAITING: "waiting",
    JobState.DELAYED: "waiting",
    JobState.ACTIVE: "active",
    JobState.COMPLETED: "completed",
    JobState.FAILED: "failed",
}


@dataclass(frozen=True)
class Skipped:
    """A job that found nothing to do."""

    reason: str


@dataclass(eq=False)
class SyncJob:
    type: JobType
    payload: dict
    priority: int = 0  # lower runs first
    id: str = field(default_factory=lambda: uuid4().hex)
    state: JobState = JobState.WAITING
    attempts: int = 0
    last_error: str | None = None
    result: Any = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def tenant_id(self) -> str:
        return str(self.payload.get("tenant_id") or "")

    @property
    def order_id(self) -> str | None:
        order_id = self.payload.get("order_id")
        return str(order_id) if order_id else None

    @property
    def lease_key(self) -> str | None:
        """Orders can only have one exclusive job in flight."""
        return self.order_id if self.type in ORDER_EXCLUSIVE_TYPES else None

    @property
    def coalesce_key(self) -> str | None:
        """Submissions sharing this key collapse into one unfinished job."""
        if self.type in SINGLETON_TYPES:
            return self.type.value
        if self.lease_key is not None:
            return f"{self.type.value}:{self.lease_key}"
        return None

    @property
    def finished(self) -> bool:
        return self.state in FINISHED_STATES

    def to_dict(self) -> dict:
        result = self.result
        if is_dataclass(result) and not isinstance(result, type):
            result = asdict(result)
        return {
            "type": self.type.value,
            "payload": self.payload,
            "priority": self.priority,
            "id": self.id,
            "state": self.state.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "result": result,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncJob":
        return cls(
            type=JobType(data["type"]),
            payload=data["payload"],
            priority=data.get("priority", 0),
            id=data["id"],
            state=JobState(data["state"]),
            attempts=data.get("attempts", 0),
            last_error=data.get("last_error"),
            result=data.get("result"),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
