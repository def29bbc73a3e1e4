"""Order persistence queries used by the job handlers and the reconciler."""

from datetime import UTC, datetime

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from delivery.order.order import Order
from delivery.order.status import POLLABLE_STATUSES, ConfirmationStatus, OrderStatus, SyncStatus

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _repo():
    return current_domain.repository_for(Order)


def load_order(order_id: str, tenant_id: str | None = None) -> Order:
    """Fetch an order, refusing to cross tenants."""
    order = _repo().get(order_id)
    if tenant_id is not None and str(order.tenant_id) != str(tenant_id):
        raise ObjectNotFoundError(f"Order {order_id} does not exist for tenant {tenant_id}")
    return order


def save_order(order: Order) -> Order:
    _repo().add(order)
    return order


def _paged(query, page_size: int):
    """Yield every row of ``query``, ``page_size`` rows per round trip."""
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    offset = 0
    while True:
        rows = query.offset(offset).limit(page_size).all().items
        yield from rows
        if len(rows) < page_size:
            return
        offset += page_size


def find_pending_status_updates(page_size: int = 500) -> list[Order]:
    """Every order with a tracking number whose status is not yet terminal.

    The scan pages through all candidates; ``page_size`` only bounds one
    round trip. Never-checked orders come first, then the least recently
    checked.
    """
    query = _repo()._dao.query.filter(
        sync_status=SyncStatus.SYNCED.value,
        status__in=[status.value for status in POLLABLE_STATUSES],
    )
    rows = _paged(query.order_by(["created_at", "id"]), page_size)
    candidates = [order for order in rows if order.needs_status_refresh]
    return sorted(candidates, key=lambda order: order.last_status_check or _EPOCH)


def find_pending_sync(tenant_id: str, limit: int = 100) -> list[Order]:
    """Confirmed orders with a provider that still wait to be dispatched."""
    orders = (
        _repo()
        ._dao.query.filter(
            tenant_id=str(tenant_id),
            confirmation_status=ConfirmationStatus.CONFIRMED.value,
            sync_status=SyncStatus.PENDING.value,
        )
        .limit(limit)
        .all()
        .items
    )
    return [
        order
        for order in orders
        if order.provider_slug and OrderStatus(order.status) not in (OrderStatus.CANCELLED, OrderStatus.REFUNDED)
    ]


def find_by_tracking_number(tenant_id: str, provider_slug: str, tracking_number: str) -> Order:
    order = (
        _repo()
        ._dao.query.filter(
            tenant_id=str(tenant_id),
            provider_slug=provider_slug,
            tracking_number=tracking_number,
        )
        .all()
        .first
    )
    if order is None:
        raise ObjectNotFoundError(f"No {provider_slug} order with tracking number {tracking_number}")
    return order


def find_recent_orders(tenant_id: str, since: datetime, phone_key: str, page_size: int = 500) -> list[Order]:
    """Orders of the tenant created since ``since`` whose phone ends with ``phone_key``."""
    query = _repo()._dao.query.filter(
        tenant_id=str(tenant_id),
        created_at__gte=since,
        customer_phone__endswith=phone_key,
    )
    return list(_paged(query.order_by(["created_at", "id"]), page_size))
