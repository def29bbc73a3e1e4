"""Duplicate detection — surfaces orders that look like a repeat of a recent one.

Two orders are candidates when they share tenant and customer phone, the
earlier one was created within the window, and it was not cancelled or
refunded. Item overlap is reported but not required: a repeat purchase with
different items is still flagged, since checking a false alarm costs less
than shipping and billing a second parcel.
"""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog

from delivery.errors import DuplicateSuspected
from delivery.order.queries import find_recent_orders
from delivery.order.status import NEGATIVE_TERMINAL_STATUSES, OrderStatus

logger = structlog.get_logger(__name__)

_NON_DIGITS = re.compile(r"\D")

# Numbers are compared on their trailing national digits so that
# "+212 612-345678" and "0612345678" match.
_PHONE_KEY_LENGTH = 9


def normalize_phone(raw: str) -> str:
    """Strip separators, keeping a leading ``+``."""
    raw = (raw or "").strip()
    if raw.startswith("00"):
        raw = "+" + raw[2:]
    digits = _NON_DIGITS.sub("", raw)
    return f"+{digits}" if raw.startswith("+") else digits


def phone_key(raw: str) -> str:
    return _NON_DIGITS.sub("", raw or "")[-_PHONE_KEY_LENGTH:]


def item_key(item) -> str:
    sku = item.get("sku") if isinstance(item, dict) else getattr(item, "sku", None)
    name = item.get("product_name") if isinstance(item, dict) else getattr(item, "product_name", None)
    return (sku or name or "").strip().lower()


@dataclass(frozen=True)
class DuplicateCandidate:
    order_id: str
    order_number: str
    status: str
    total_amount: float
    created_at: datetime
    items: tuple[str, ...] = field(default_factory=tuple)
    overlapping_items: tuple[str, ...] = field(default_factory=tuple)


def find_duplicate_candidates(
    tenant_id: str,
    customer_phone: str,
    items: list,
    window_hours: int = 24,
    now: datetime | None = None,
    exclude_order_id: str | None = None,
) -> list[DuplicateCandidate]:
    now = now or datetime.now(UTC)
    since = now - timedelta(hours=window_hours)
    wanted_phone = phone_key(customer_phone)
    wanted_items = {item_key(item) for item in items} - {""}

    if not wanted_phone:
        return []

    candidates = []
    for order in find_recent_orders(tenant_id, since, wanted_phone):
        if exclude_order_id and str(order.id) == str(exclude_order_id):
            continue
        if order.created_at is None or not since <= order.created_at <= now:
            continue
        if phone_key(order.customer_phone) != wanted_phone:
            continue
        if OrderStatus(order.status) in NEGATIVE_TERMINAL_STATUSES:
            continue
        existing_items = tuple(sorted({item_key(item) for item in (order.items or [])} - {""}))
        candidates.append(
            DuplicateCandidate(
                order_id=str(order.id),
                order_number=order.order_number,
                status=order.status,
                total_amount=order.total_amount or 0.0,
                created_at=order.created_at,
                items=existing_items,
                overlapping_items=tuple(sorted(wanted_items.intersection(existing_items))),
            )
        )
    return sorted(candidates, key=lambda candidate: candidate.created_at, reverse=True)


def check_duplicates(order, window_hours: int = 24, now: datetime | None = None) -> DuplicateSuspected | None:
    """Return an advisory for ``order`` if earlier look-alike orders exist."""
    candidates = find_duplicate_candidates(
        tenant_id=str(order.tenant_id),
        customer_phone=order.customer_phone,
        items=list(order.items or []),
        window_hours=window_hours,
        now=now,
        exclude_order_id=str(order.id),
    )
    if not candidates:
        return None
    logger.warning(
        "duplicate_order_suspected",
        order_id=str(order.id),
        order_number=order.order_number,
        candidates=[candidate.order_number for candidate in candidates],
    )
    return DuplicateSuspected(order_id=str(order.id), candidates=tuple(candidates))
