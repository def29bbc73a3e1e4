"""DeadLetter aggregate — jobs that failed terminally or ran out of attempts."""

import json
from datetime import UTC, datetime

from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.jobs.policy import JobType


@delivery.aggregate
class DeadLetter:
    job_id = String(required=True, max_length=64)
    job_type = String(required=True, max_length=30, choices=JobType)
    tenant_id = Identifier()
    order_id = Identifier()
    payload = Text(required=True)  # JSON object
    attempts = Integer(default=0)
    error = Text(required=True)
    error_kind = String(max_length=50)
    dead_lettered_at = DateTime(required=True)


def record_dead_letter(job, failure) -> DeadLetter:
    letter = DeadLetter(
        job_id=job.id,
        job_type=job.type.value,
        tenant_id=job.tenant_id or None,
        order_id=job.order_id,
        payload=json.dumps(job.payload, default=str),
        attempts=job.attempts,
        error=failure.error,
        error_kind=failure.kind,
        dead_lettered_at=datetime.now(UTC),
    )
    current_domain.repository_for(DeadLetter).add(letter)
    return letter


def list_dead_letters(job_type: JobType | None = None, tenant_id: str | None = None, limit: int = 100) -> list[DeadLetter]:
    """Dead letters, newest first."""
    criteria = {}
    if job_type is not None:
        criteria["job_type"] = job_type.value
    if tenant_id is not None:
        criteria["tenant_id"] = str(tenant_id)
    query = current_domain.repository_for(DeadLetter)._dao.query
    if criteria:
        query = query.filter(**criteria)
    return query.order_by("-dead_lettered_at").limit(limit).all().items
