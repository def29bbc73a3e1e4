"""Manual cancellation and refund — commands and handler."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.order.order import Order
from delivery.order.queries import load_order


@delivery.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    reason = String(required=True, max_length=500)


@delivery.command(part_of="Order")
class RefundOrder:
    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    reason = String(max_length=500)


@delivery.command_handler(part_of=Order)
class CancellationHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        order = load_order(command.order_id, command.tenant_id)
        order.cancel(command.reason)
        current_domain.repository_for(Order).add(order)

    @handle(RefundOrder)
    def refund_order(self, command):
        order = load_order(command.order_id, command.tenant_id)
        order.refund(command.reason)
        current_domain.repository_for(Order).add(order)
