"""Dispatch outcomes — commands recording what a create-parcel call produced."""

from protean import handle
from protean.fields import Boolean, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.order.order import Order
from delivery.order.queries import load_order


@delivery.command(part_of="Order")
class RecordParcelCreated:
    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    provider = String(required=True, max_length=50)
    tracking_number = String(required=True, max_length=100)
    details = Text()


@delivery.command(part_of="Order")
class RecordSyncFailure:
    """Record one failed attempt; ``terminal`` marks the order failed."""

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    provider = String(max_length=50)
    error = Text(required=True)
    terminal = Boolean(default=False)
    ambiguous = Boolean(default=False)
    attempted = Boolean(default=True)


@delivery.command(part_of="Order")
class MarkSyncFailed:
    """Retries are exhausted."""

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    provider = String(max_length=50)
    error = Text(required=True)


@delivery.command_handler(part_of=Order)
class DispatchOutcomeHandler:
    @handle(RecordParcelCreated)
    def record_parcel_created(self, command):
        order = load_order(command.order_id, command.tenant_id)
        created = order.record_parcel_created(command.provider, command.tracking_number, command.details)
        if created:
            current_domain.repository_for(Order).add(order)
        return created

    @handle(RecordSyncFailure)
    def record_sync_failure(self, command):
        order = load_order(command.order_id, command.tenant_id)
        order.record_sync_failure(
            provider=command.provider,
            error=command.error,
            terminal=command.terminal,
            ambiguous=command.ambiguous,
            attempted=command.attempted,
        )
        current_domain.repository_for(Order).add(order)

    @handle(MarkSyncFailed)
    def mark_sync_failed(self, command):
        order = load_order(command.order_id, command.tenant_id)
        order.mark_sync_failed(command.provider, command.error)
        current_domain.repository_for(Order).add(order)
