"""Order status vocabulary and the transition rules between statuses.

Three independent axes:

    status               pending → confirmed → processing → shipped → {delivered | returned}
                         any state except delivered/returned/refunded → cancelled
                         {cancelled, returned} → refunded
    confirmation_status  human/IVR confirmation; only ``confirmed`` orders are dispatched
    sync_status          result of the create-parcel call (pending / synced / failed)

Provider reports are applied only when they move an order forward along the
canonical progression, or when they are one of the exception outcomes
(cancelled, returned, refunded) reachable from the current status. Anything
else is kept in the order's history and never regresses ``status``.
"""

from enum import Enum


class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class ConfirmationStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    NO_RESPONSE = "no_response"
    CALLBACK_REQUESTED = "callback_requested"


class SyncStatus(Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class HistorySource(Enum):
    REGISTRATION = "registration"
    PARCEL_CREATED = "parcel_created"
    PROVIDER_POLL = "provider_poll"
    WEBHOOK = "webhook"
    MANUAL = "manual"


_PROGRESSION = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
_RANK = {status: rank for rank, status in enumerate(_PROGRESSION)}

_NOT_CANCELLABLE = {
    OrderStatus.DELIVERED,
    OrderStatus.RETURNED,
    OrderStatus.REFUNDED,
    OrderStatus.CANCELLED,
}

_EXCEPTION_SOURCES = {
    OrderStatus.CANCELLED: set(OrderStatus) - _NOT_CANCELLABLE,
    OrderStatus.RETURNED: {OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED},
    OrderStatus.REFUNDED: {OrderStatus.CANCELLED, OrderStatus.RETURNED},
}

# Statuses the bulk reconciler keeps polling providers about
POLLABLE_STATUSES = frozenset(
    {
        OrderStatus.PENDING,
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
    }
)

# Statuses that exclude an order from duplicate detection
NEGATIVE_TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True if ``target`` is forward progress or a reachable exception outcome."""
    if current == target:
        return False
    if target in _RANK:
        return current in _RANK and _RANK[target] > _RANK[current]
    return current in _EXCEPTION_SOURCES[target]


def is_cancellable(current: OrderStatus) -> bool:
    return current not in _NOT_CANCELLABLE
