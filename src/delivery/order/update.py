"""Order update — command and handler (the update-order job)."""

import json

from protean import handle
from protean.fields import Identifier, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.order.duplicates import normalize_phone
from delivery.order.order import Order
from delivery.order.queries import load_order


@delivery.command(part_of="Order")
class UpdateOrder:
    """Patch contact or delivery details of an order."""

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    patch = Text(required=True)  # JSON object of field -> value


@delivery.command_handler(part_of=Order)
class UpdateOrderHandler:
    @handle(UpdateOrder)
    def update_order(self, command):
        patch = json.loads(command.patch) if isinstance(command.patch, str) else dict(command.patch)
        if patch.get("customer_phone"):
            patch["customer_phone"] = normalize_phone(patch["customer_phone"])

        order = load_order(command.order_id, command.tenant_id)
        order.update_details(**patch)
        current_domain.repository_for(Order).add(order)
        return order
