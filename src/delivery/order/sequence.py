"""Per-tenant daily order-number sequence.

Order numbers are ``YYYYMMDD`` followed by a four-digit counter that restarts
every day for every tenant, e.g. ``202610180007``.
"""

from datetime import UTC, datetime

from protean.exceptions import ObjectNotFoundError
from protean.fields import Integer, String
from protean.utils.globals import current_domain

from delivery.domain import delivery


@delivery.aggregate
class OrderSequence:
    key = String(identifier=True, required=True, max_length=80)  # "<tenant>:<YYYYMMDD>"
    last_value = Integer(default=0)


def next_order_number(tenant_id: str, today: datetime | None = None) -> str:
    day = (today or datetime.now(UTC)).strftime("%Y%m%d")
    key = f"{tenant_id}:{day}"
    repo = current_domain.repository_for(OrderSequence)
    try:
        sequence = repo.get(key)
    except ObjectNotFoundError:
        sequence = OrderSequence(key=key, last_value=0)
    sequence.last_value = (sequence.last_value or 0) + 1
    repo.add(sequence)
    return f"{day}{sequence.last_value:04d}"
