"""Provider status reports — polled by the reconciler or pushed by webhooks.

Both paths end in ``Order.apply_provider_status`` so they obey the same
no-regression rule.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.errors import DeliveryError
from delivery.order.order import Order
from delivery.order.queries import find_by_tracking_number, load_order
from delivery.order.status import HistorySource

logger = structlog.get_logger(__name__)


@delivery.command(part_of="Order")
class RecordProviderStatus:
    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    provider = String(required=True, max_length=50)
    provider_status = String(required=True, max_length=255)
    mapped_status = String(max_length=20)
    source = String(max_length=30, choices=HistorySource, default=HistorySource.PROVIDER_POLL.value)
    details = Text()


@delivery.command(part_of="Order")
class RecordStatusCheckFailure:
    order_id = Identifier(required=True)
    tenant_id = Identifier(required=True)
    error = Text(required=True)


@delivery.command(part_of="Order")
class IngestProviderWebhook:
    """A status push from a provider, with the raw body and its signature."""

    tenant_id = Identifier(required=True)
    provider = String(required=True, max_length=50)
    body = Text(required=True)
    signature = String(max_length=256)


@delivery.command_handler(part_of=Order)
class TrackingHandler:
    @handle(RecordProviderStatus)
    def record_provider_status(self, command):
        order = load_order(command.order_id, command.tenant_id)
        applied = order.apply_provider_status(
            provider=command.provider,
            provider_status=command.provider_status,
            mapped_status=command.mapped_status or None,
            source=HistorySource(command.source or HistorySource.PROVIDER_POLL.value),
            details=command.details,
        )
        current_domain.repository_for(Order).add(order)
        return applied

    @handle(RecordStatusCheckFailure)
    def record_status_check_failure(self, command):
        order = load_order(command.order_id, command.tenant_id)
        order.record_status_check_failure(command.error)
        current_domain.repository_for(Order).add(order)

    @handle(IngestProviderWebhook)
    def ingest_webhook(self, command):
        from delivery.provider import get_registry
        from delivery.provider.port import Capability

        resolved = get_registry().resolve(str(command.tenant_id), command.provider)
        adapter = resolved.adapter
        if not adapter.supports(Capability.WEBHOOK):
            raise ValidationError({"provider": [f"{command.provider} does not push status updates"]})
        if not adapter.verify_webhook_signature(command.body.encode("utf-8"), command.signature or "", resolved.config):
            logger.warning("webhook_signature_rejected", tenant_id=str(command.tenant_id), provider=command.provider)
            raise ValidationError({"signature": ["Invalid webhook signature"]})

        try:
            report = adapter.parse_webhook(json.loads(command.body))
        except (ValueError, KeyError, DeliveryError) as exc:
            raise ValidationError({"body": [f"Unreadable webhook body: {exc}"]}) from exc

        order = find_by_tracking_number(str(command.tenant_id), command.provider, report.tracking_number)
        applied = order.apply_provider_status(
            provider=command.provider,
            provider_status=report.status,
            mapped_status=adapter.normalize_status(report.status),
            source=HistorySource.WEBHOOK,
            details=report.details,
        )
        current_domain.repository_for(Order).add(order)
        return applied
