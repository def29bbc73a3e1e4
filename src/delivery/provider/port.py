"""Provider port — the capability interface every delivery provider adapter implements.

The engine programs against this port only. Field mapping, transport, auth
and response parsing are adapter-local; the engine hands adapters a
normalized ``OrderView`` and receives ``ParcelResult`` / ``StatusResult``.

Contract:
    - ``create_parcel`` returns ``ParcelResult(success=False, error=...)`` for a
      business refusal and raises ``TransportError`` / ``ProtocolError`` /
      ``AuthenticationError`` for everything else.
    - ``check_status`` returns the provider's native status wording; the
      adapter's ``status_map`` translates it to the canonical vocabulary.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Capability(Enum):
    CREATE_PARCEL = "create_parcel"
    CHECK_STATUS = "check_status"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class ItemView:
    product_name: str
    quantity: int = 1
    sku: str | None = None
    unit_price: float = 0.0


@dataclass(frozen=True)
class OrderView:
    """Provider-neutral snapshot of an order, built once per dispatch."""

    order_id: str
    tenant_id: str
    order_number: str
    customer_name: str
    customer_phone: str
    city: str
    address: str
    total_amount: float
    items: tuple[ItemView, ...] = ()
    city_code: str | None = None
    notes: str = ""
    parcel_code: str | None = None  # idempotency token

    @classmethod
    def from_order(cls, order) -> "OrderView":
        return cls(
            order_id=str(order.id),
            tenant_id=str(order.tenant_id),
            order_number=order.order_number,
            customer_name=order.customer_name or "",
            customer_phone=order.customer_phone,
            city=order.city or "",
            address=order.address or "",
            total_amount=order.total_amount or 0.0,
            items=tuple(
                ItemView(
                    product_name=item.product_name,
                    quantity=item.quantity,
                    sku=item.sku,
                    unit_price=item.unit_price or 0.0,
                )
                for item in (order.items or [])
            ),
            city_code=order.city_code,
            notes=order.delivery_notes or "",
            parcel_code=order.order_number,
        )

    @property
    def product_summary(self) -> str:
        return ", ".join(item.product_name for item in self.items)

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)


@dataclass(frozen=True)
class ParcelResult:
    success: bool
    tracking_number: str | None = None
    raw_response: Any = field(default=None, repr=False)
    error: str | None = None


@dataclass(frozen=True)
class StatusResult:
    success: bool
    status: str | None = None
    history: tuple = ()
    raw_response: Any = field(default=None, repr=False)
    error: str | None = None


@dataclass(frozen=True)
class WebhookReport:
    tracking_number: str
    status: str
    details: str | None = None


class ProviderAdapter(ABC):
    """Abstract interface for delivery provider adapters."""

    slug: str = ""
    capabilities = frozenset({Capability.CREATE_PARCEL, Capability.CHECK_STATUS})
    # True when a repeated create for the same parcel code cannot produce a second parcel
    idempotent_create = False
    # canonical status -> provider wordings; matched exactly first, then by substring
    status_map: dict[str, tuple[str, ...]] = {}

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @abstractmethod
    async def create_parcel(self, order: OrderView, config) -> ParcelResult:
        """Hand the order to the provider and return its tracking number."""
        ...

    async def check_status(self, tracking_number: str, config) -> StatusResult:
        raise NotImplementedError(f"{self.slug} does not report parcel status")

    async def authenticate(self, config) -> None:
        """Validate credentials. Stateless adapters have nothing to do."""
        return None

    async def aclose(self) -> None:
        return None

    def normalize_status(self, raw_status: str | None) -> str | None:
        raw = (raw_status or "").strip().casefold()
        if not raw:
            return None
        for canonical, wordings in self.status_map.items():
            if any(raw == wording.casefold() for wording in wordings):
                return canonical
        for canonical, wordings in self.status_map.items():
            if any(wording.casefold() in raw for wording in wordings):
                return canonical
        return None

    def verify_webhook_signature(self, payload: bytes, signature: str, config) -> bool:
        """HMAC-SHA256 of the raw body, hex encoded, keyed with the tenant's webhook secret."""
        secret = getattr(config, "webhook_secret", None)
        if not secret or not signature:
            return False
        expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    def parse_webhook(self, payload: dict) -> WebhookReport:
        return WebhookReport(
            tracking_number=str(payload["tracking_number"]),
            status=str(payload["status"]),
            details=payload.get("details"),
        )
