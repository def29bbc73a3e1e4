"""Order domain events — immutable facts about dispatch and status changes.

Every state transition of an Order raises one of these. The audit handler
forwards them to the automation layer; they are also the only trace of a
status report that was recorded but not applied.
"""

from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from delivery.domain import delivery


@delivery.event(part_of="Order")
class OrderRegistered:
    """An order was ingested and is waiting for confirmation."""

    __version__ = 1

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    order_number = String(required=True)
    customer_phone = String(required=True)
    provider_slug = String()
    registered_at = DateTime(required=True)


@delivery.event(part_of="Order")
class OrderDetailsUpdated:
    """Contact or delivery details of an order were changed."""

    __version__ = 1

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    changed_fields = Text(required=True)  # JSON list of field names
    updated_at = DateTime(required=True)


@delivery.event(part_of="Order")
class ConfirmationRecorded:
    """The customer confirmation outcome was recorded."""

    __version__ = 1

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    confirmation_status = String(required=True)
    recorded_at = DateTime(required=True)


@delivery.event(part_of="Order")
class ParcelCreated:
    """The provider accepted the parcel and assigned a tracking number."""

    __version__ = 1

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    provider = String(required=True)
    tracking_number = String(required=True)
    attempts = Integer(required=True)
    created_at = DateTime(required=True)


@delivery.event(part_of="Order")
class SyncAttemptFailed:
    """A create-parcel attempt failed; ``terminal`` tells whether it will be retried."""

    __version__ = 1

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    provider = String()
    error = Text(required=True)
    terminal = Boolean(default=False)
    ambiguous = Boolean(default=False)
    attempts = Integer(required=True)
    failed_at = DateTime(required=True)


@delivery.event(part_of="Order")
class SyncFailed:
    """Dispatch gave up; the order needs manual intervention."""

    __version__ = 1

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    provider = String()
    error = Text(required=True)
    attempts = Integer(required=True)
    failed_at = DateTime(required=True)


@delivery.event(part_of="Order")
class ProviderStatusRecorded:
    """A provider status report was recorded in the order history."""

    __version__ = 1

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    provider = String(required=True)
    provider_status = String(required=True)
    mapped_status = String()
    source = String(required=True)
    applied = Boolean(required=True)
    recorded_at = DateTime(required=True)


@delivery.event(part_of="Order")
class OrderStatusChanged:
    """The business status of an order moved."""

    __version__ = 1

    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    source = String(required=True)
    provider = String()
    changed_at = DateTime(required=True)
