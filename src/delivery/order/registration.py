"""Order registration — command and handler (the create-order job).

Registration assigns the order number, runs the duplicate detector and
persists the order. Duplicate candidates are returned to the caller; they
never block creation.
"""

import json
from dataclasses import dataclass

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.errors import DuplicateSuspected
from delivery.order.duplicates import check_duplicates, normalize_phone
from delivery.order.order import Order
from delivery.order.sequence import next_order_number


@dataclass(frozen=True)
class Registration:
    order_id: str
    order_number: str
    duplicate: DuplicateSuspected | None = None


@delivery.command(part_of="Order")
class RegisterOrder:
    """Register a new order coming from the ingestion path."""

    tenant_id = Identifier(required=True)
    customer_phone = String(required=True, max_length=30)
    customer_name = String(max_length=255)
    customer_email = String(max_length=255)
    city = String(max_length=100)
    city_code = String(max_length=50)
    address = String(max_length=500)
    delivery_notes = Text()
    total_amount = Float(default=0.0)
    provider_slug = String(max_length=50)
    items = Text(required=True)  # JSON list of {product_name, sku, quantity, unit_price}
    order_number = String(max_length=20)  # assigned when omitted
    duplicate_window_hours = Integer(default=24, min_value=1)


@delivery.command_handler(part_of=Order)
class RegisterOrderHandler:
    @handle(RegisterOrder)
    def register_order(self, command):
        items_data = json.loads(command.items) if isinstance(command.items, str) else command.items
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})

        repo = current_domain.repository_for(Order)
        if command.order_number:
            clash = repo._dao.query.filter(
                tenant_id=str(command.tenant_id),
                order_number=command.order_number,
            ).all()
            if clash.items:
                raise ValidationError({"order_number": [f"Order number {command.order_number} is already used"]})
            order_number = command.order_number
        else:
            order_number = next_order_number(str(command.tenant_id))

        order = Order.register(
            tenant_id=str(command.tenant_id),
            order_number=order_number,
            customer_phone=normalize_phone(command.customer_phone),
            items_data=items_data,
            provider_slug=command.provider_slug,
            customer_name=command.customer_name,
            customer_email=command.customer_email,
            city=command.city,
            city_code=command.city_code,
            address=command.address,
            delivery_notes=command.delivery_notes,
            total_amount=command.total_amount or 0.0,
        )
        duplicate = check_duplicates(order, window_hours=command.duplicate_window_hours or 24)
        repo.add(order)
        return Registration(order_id=str(order.id), order_number=order_number, duplicate=duplicate)
