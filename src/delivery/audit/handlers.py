"""Forwards every Order and ProviderConfig event to the audit sink."""

from protean.utils.mixins import handle

from delivery.audit import get_audit_sink
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
from delivery.order.order import Order
from delivery.provider.provider_config import ProviderConfig, ProviderConfigured, ProviderDisabled


def forward(event) -> None:
    get_audit_sink().record_event({"type": event.__class__.__name__, "payload": event.to_dict()})


@delivery.event_handler(part_of=Order)
class OrderAuditHandler:
    @handle(OrderRegistered)
    def on_registered(self, event: OrderRegistered) -> None:
        forward(event)

    @handle(OrderDetailsUpdated)
    def on_details_updated(self, event: OrderDetailsUpdated) -> None:
        forward(event)

    @handle(ConfirmationRecorded)
    def on_confirmation(self, event: ConfirmationRecorded) -> None:
        forward(event)

    @handle(ParcelCreated)
    def on_parcel_created(self, event: ParcelCreated) -> None:
        forward(event)

    @handle(SyncAttemptFailed)
    def on_sync_attempt_failed(self, event: SyncAttemptFailed) -> None:
        forward(event)

    @handle(SyncFailed)
    def on_sync_failed(self, event: SyncFailed) -> None:
        forward(event)

    @handle(ProviderStatusRecorded)
    def on_provider_status(self, event: ProviderStatusRecorded) -> None:
        forward(event)

    @handle(OrderStatusChanged)
    def on_status_changed(self, event: OrderStatusChanged) -> None:
        forward(event)


@delivery.event_handler(part_of=ProviderConfig)
class ProviderConfigAuditHandler:
    @handle(ProviderConfigured)
    def on_configured(self, event: ProviderConfigured) -> None:
        forward(event)

    @handle(ProviderDisabled)
    def on_disabled(self, event: ProviderDisabled) -> None:
        forward(event)
