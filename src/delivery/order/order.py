"""Order aggregate (CQRS) — the unit that is dispatched to delivery providers.

An Order carries three independent status axes (see ``delivery.order.status``)
and an append-only status history. Every successful create-parcel call and
every provider status report lands in the history, whether or not it changed
the business status.

Invariants:
    - ``tracking_number`` is set if and only if a create-parcel call succeeded;
      such a success is always recorded as a ``parcel_created`` history entry.
    - History entries are only ever appended, with strictly increasing
      ``sequence`` numbers.
    - Provider reports never move ``status`` backwards.
"""

import json
from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
)

from delivery.domain import delivery
from delivery.order.events import (
    ConfirmationRecorded,
    OrderDetailsUpdated,
    OrderRegistered,
    OrderStatusChanged,
    ParcelCreated,
    ProviderStatusRecorded,
    SyncAttemptFailed,
    SyncFailed,
)
from delivery.order.status import (
    POLLABLE_STATUSES,
    ConfirmationStatus,
    HistorySource,
    OrderStatus,
    SyncStatus,
    can_transition,
    is_cancellable,
)

# Fields a caller may patch through UpdateOrder
UPDATABLE_FIELDS = (
    "customer_name",
    "customer_phone",
    "customer_email",
    "city",
    "city_code",
    "address",
    "delivery_notes",
    "total_amount",
    "provider_slug",
)

_STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@delivery.entity(part_of="Order")
class OrderItem:
    """A product line of the order, as described to the provider."""

    product_name = String(required=True, max_length=255)
    sku = String(max_length=100)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(default=0.0)


@delivery.entity(part_of="Order")
class StatusHistoryEntry:
    """One audit record. ``applied`` is False for reports that did not move the order."""

    sequence = Integer(required=True, min_value=1)
    status = String(max_length=20)  # canonical status, empty when unmapped
    provider_status = String(max_length=255)  # provider's native wording
    source = String(required=True, max_length=30, choices=HistorySource)
    provider = String(max_length=50)
    details = Text()
    applied = Boolean(default=True)
    recorded_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@delivery.aggregate
class Order:
    tenant_id = Identifier(required=True)
    order_number = String(required=True, max_length=20)
    customer_name = String(max_length=255)
    customer_phone = String(required=True, max_length=30)
    customer_email = String(max_length=255)
    city = String(max_length=100)
    city_code = String(max_length=50)  # provider-side city or zone identifier
    address = String(max_length=500)
    delivery_notes = Text()
    total_amount = Float(default=0.0)
    items = HasMany(OrderItem)

    status = String(max_length=20, choices=OrderStatus, default=OrderStatus.PENDING.value)
    confirmation_status = String(
        max_length=30,
        choices=ConfirmationStatus,
        default=ConfirmationStatus.PENDING.value,
    )
    sync_status = String(max_length=20, choices=SyncStatus, default=SyncStatus.PENDING.value)
    provider_slug = String(max_length=50)
    tracking_number = String(max_length=100)
    status_history = HasMany(StatusHistoryEntry)

    last_sync_at = DateTime()
    last_status_check = DateTime()
    sync_error = Text()
    sync_attempts = Integer(default=0)
    last_sync_ambiguous = Boolean(default=False)
    cancellation_reason = String(max_length=500)

    confirmed_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def register(
        cls,
        tenant_id: str,
        order_number: str,
        customer_phone: str,
        items_data: list[dict],
        provider_slug: str | None = None,
        **details,
    ):
        """Create a new order in pending / pending / pending."""
        now = datetime.now(UTC)
        order = cls(
            tenant_id=tenant_id,
            order_number=order_number,
            customer_phone=customer_phone,
            provider_slug=provider_slug,
            created_at=now,
            updated_at=now,
            **details,
        )
        for item_data in items_data:
            order.add_items(OrderItem(**item_data))
        order._append_history(
            HistorySource.REGISTRATION,
            status=OrderStatus.PENDING.value,
            recorded_at=now,
        )
        order.raise_(
            OrderRegistered(
                order_id=str(order.id),
                tenant_id=tenant_id,
                order_number=order_number,
                customer_phone=customer_phone,
                provider_slug=provider_slug or "",
                registered_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # History helpers
    # -------------------------------------------------------------------
    def history(self) -> list:
        """Status history in append order."""
        return sorted(self.status_history or [], key=lambda entry: entry.sequence)

    def _append_history(self, source: HistorySource, recorded_at: datetime, **fields) -> None:
        entries = self.status_history or []
        next_sequence = max((entry.sequence for entry in entries), default=0) + 1
        self.add_status_history(
            StatusHistoryEntry(
                sequence=next_sequence,
                source=source.value,
                recorded_at=recorded_at,
                **fields,
            )
        )

    def _last_provider_report(self):
        reports = [
            entry
            for entry in self.history()
            if entry.source in (HistorySource.PROVIDER_POLL.value, HistorySource.WEBHOOK.value)
        ]
        return reports[-1] if reports else None

    def _move_to(self, target: OrderStatus, source: HistorySource, now: datetime, provider: str | None = None) -> None:
        previous = self.status
        self.status = target.value
        timestamp_field = _STATUS_TIMESTAMPS.get(target)
        if timestamp_field and getattr(self, timestamp_field) is None:
            setattr(self, timestamp_field, now)
        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                tenant_id=str(self.tenant_id),
                previous_status=previous,
                new_status=target.value,
                source=source.value,
                provider=provider or "",
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Queries on state
    # -------------------------------------------------------------------
    @property
    def is_synced(self) -> bool:
        return self.sync_status == SyncStatus.SYNCED.value

    @property
    def needs_status_refresh(self) -> bool:
        return bool(self.tracking_number) and OrderStatus(self.status) in POLLABLE_STATUSES

    def assert_dispatchable(self) -> None:
        """Raise unless the order may be handed to its provider."""
        if self.confirmation_status != ConfirmationStatus.CONFIRMED.value:
            raise ValidationError({"confirmation_status": ["Only confirmed orders can be dispatched"]})
        if not self.provider_slug:
            raise ValidationError({"provider_slug": ["Order has no delivery provider"]})
        if self.sync_status == SyncStatus.FAILED.value:
            raise ValidationError({"sync_status": ["Dispatch failed terminally; manual intervention required"]})
        if OrderStatus(self.status) in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
            raise ValidationError({"status": [f"Cannot dispatch a {self.status} order"]})

    # -------------------------------------------------------------------
    # Details and confirmation
    # -------------------------------------------------------------------
    def update_details(self, **patch) -> list[str]:
        """Apply a whitelisted patch; return the names of fields that changed."""
        unknown = sorted(set(patch) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError({"patch": [f"Fields cannot be updated: {', '.join(unknown)}"]})

        changed = [name for name, value in patch.items() if getattr(self, name) != value]
        if not changed:
            return []

        if "provider_slug" in changed:
            if self.is_synced:
                raise ValidationError({"provider_slug": ["Provider cannot change after the parcel was created"]})
            self.sync_status = SyncStatus.PENDING.value
            self.sync_error = None
            self.sync_attempts = 0
            self.last_sync_ambiguous = False

        for name in changed:
            setattr(self, name, patch[name])

        now = datetime.now(UTC)
        self.updated_at = now
        self.raise_(
            OrderDetailsUpdated(
                order_id=str(self.id),
                tenant_id=str(self.tenant_id),
                changed_fields=json.dumps(changed),
                updated_at=now,
            )
        )
        return changed

    def record_confirmation(self, confirmation_status: str) -> None:
        try:
            target = ConfirmationStatus(confirmation_status)
        except ValueError:
            raise ValidationError(
                {"confirmation_status": [f"Unknown confirmation status: {confirmation_status}"]}
            ) from None
        if self.is_synced and target != ConfirmationStatus.CONFIRMED:
            raise ValidationError({"confirmation_status": ["Order was already dispatched to its provider"]})

        now = datetime.now(UTC)
        self.confirmation_status = target.value
        if target == ConfirmationStatus.CONFIRMED and self.confirmed_at is None:
            self.confirmed_at = now
        self.updated_at = now
        self.raise_(
            ConfirmationRecorded(
                order_id=str(self.id),
                tenant_id=str(self.tenant_id),
                confirmation_status=target.value,
                recorded_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Dispatch outcomes
    # -------------------------------------------------------------------
    def record_parcel_created(self, provider: str, tracking_number: str, details: str | None = None) -> bool:
        """Record a successful create-parcel call.

        Returns False when the same tracking number was already recorded, so a
        repeated success after an ambiguous retry is harmless. A different
        tracking number for an already-synced order is refused.
        """
        if not tracking_number:
            raise ValidationError({"tracking_number": ["A successful create call must return a tracking number"]})
        if self.tracking_number:
            if self.tracking_number == tracking_number:
                return False
            raise ValidationError(
                {"tracking_number": [f"Order already has tracking number {self.tracking_number}"]}
            )

        now = datetime.now(UTC)
        self.tracking_number = tracking_number
        self.sync_status = SyncStatus.SYNCED.value
        self.sync_error = None
        self.sync_attempts = (self.sync_attempts or 0) + 1
        self.last_sync_at = now
        self.last_sync_ambiguous = False
        self.updated_at = now
        self._append_history(
            HistorySource.PARCEL_CREATED,
            status=OrderStatus.CONFIRMED.value,
            provider=provider,
            details=details,
            recorded_at=now,
        )
        self.raise_(
            ParcelCreated(
                order_id=str(self.id),
                tenant_id=str(self.tenant_id),
                provider=provider,
                tracking_number=tracking_number,
                attempts=self.sync_attempts,
                created_at=now,
            )
        )
        if can_transition(OrderStatus(self.status), OrderStatus.CONFIRMED):
            self._move_to(OrderStatus.CONFIRMED, HistorySource.PARCEL_CREATED, now, provider)
        return True

    def record_sync_failure(
        self,
        provider: str | None,
        error: str,
        terminal: bool = False,
        ambiguous: bool = False,
        attempted: bool = True,
    ) -> None:
        """Record a failed dispatch attempt.

        ``attempted`` is False when no provider call was made (for example the
        provider is not configured), so the attempt counter is left alone.
        """
        if self.is_synced:
            raise ValidationError({"sync_status": ["Order is already synced"]})

        now = datetime.now(UTC)
        if attempted:
            self.sync_attempts = (self.sync_attempts or 0) + 1
            self.last_sync_at = now
        self.sync_error = error
        self.last_sync_ambiguous = ambiguous
        self.updated_at = now
        self.raise_(
            SyncAttemptFailed(
                order_id=str(self.id),
                tenant_id=str(self.tenant_id),
                provider=provider or "",
                error=error,
                terminal=terminal,
                ambiguous=ambiguous,
                attempts=self.sync_attempts,
                failed_at=now,
            )
        )
        if terminal:
            self.mark_sync_failed(provider, error)

    def mark_sync_failed(self, provider: str | None, error: str) -> None:
        """Give up on dispatch; the order now needs an operator."""
        if self.is_synced or self.sync_status == SyncStatus.FAILED.value:
            return
        now = datetime.now(UTC)
        self.sync_status = SyncStatus.FAILED.value
        self.sync_error = error
        self.updated_at = now
        self.raise_(
            SyncFailed(
                order_id=str(self.id),
                tenant_id=str(self.tenant_id),
                provider=provider or "",
                error=error,
                attempts=self.sync_attempts or 0,
                failed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Provider status reports
    # -------------------------------------------------------------------
    def apply_provider_status(
        self,
        provider: str,
        provider_status: str,
        mapped_status: str | None,
        source: HistorySource = HistorySource.PROVIDER_POLL,
        details: str | None = None,
    ) -> bool:
        """Record a provider status report and apply it if it is forward progress.

        A report identical to the previous one from the provider only bumps
        ``last_status_check``. Returns True when ``status`` changed.
        """
        now = datetime.now(UTC)
        self.last_status_check = now
        if self.is_synced:
            self.sync_error = None

        last = self._last_provider_report()
        if last is not None and last.provider == provider and last.provider_status == provider_status:
            return False

        target = OrderStatus(mapped_status) if mapped_status else None
        applies = target is not None and can_transition(OrderStatus(self.status), target)

        self._append_history(
            source,
            status=target.value if target else "",
            provider_status=provider_status,
            provider=provider,
            details=details,
            applied=applies,
            recorded_at=now,
        )
        self.updated_at = now
        self.raise_(
            ProviderStatusRecorded(
                order_id=str(self.id),
                tenant_id=str(self.tenant_id),
                provider=provider,
                provider_status=provider_status,
                mapped_status=target.value if target else "",
                source=source.value,
                applied=applies,
                recorded_at=now,
            )
        )
        if applies:
            self._move_to(target, source, now, provider)
        return applies

    def record_status_check_failure(self, error: str) -> None:
        now = datetime.now(UTC)
        self.last_status_check = now
        self.sync_error = error
        self.updated_at = now

    # -------------------------------------------------------------------
    # Manual lifecycle
    # -------------------------------------------------------------------
    def cancel(self, reason: str) -> None:
        current = OrderStatus(self.status)
        if not is_cancellable(current):
            raise ValidationError({"status": [f"Cannot cancel a {current.value} order"]})
        now = datetime.now(UTC)
        self.cancellation_reason = reason
        self._append_history(
            HistorySource.MANUAL,
            status=OrderStatus.CANCELLED.value,
            details=reason,
            recorded_at=now,
        )
        self.updated_at = now
        self._move_to(OrderStatus.CANCELLED, HistorySource.MANUAL, now)

    def refund(self, reason: str | None = None) -> None:
        current = OrderStatus(self.status)
        if not can_transition(current, OrderStatus.REFUNDED):
            raise ValidationError({"status": [f"Cannot refund a {current.value} order"]})
        now = datetime.now(UTC)
        self._append_history(
            HistorySource.MANUAL,
            status=OrderStatus.REFUNDED.value,
            details=reason,
            recorded_at=now,
        )
        self.updated_at = now
        self._move_to(OrderStatus.REFUNDED, HistorySource.MANUAL, now)
