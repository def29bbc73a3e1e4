"""Confirmation — records the outcome of the customer confirmation call."""

from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.order.order import Order
from delivery.order.queries import load_order
from delivery.order.status import ConfirmationStatus


@delivery.command(part_of="Order")
class RecordConfirmation:
    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    confirmation_status = String(required=True, max_length=30, choices=ConfirmationStatus)


@delivery.command_handler(part_of=Order)
class ConfirmationHandler:
    @handle(RecordConfirmation)
    def record_confirmation(self, command):
        order = load_order(command.order_id, command.tenant_id)
        order.record_confirmation(command.confirmation_status)
        current_domain.repository_for(Order).add(order)
