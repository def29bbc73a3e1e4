"""sync-with-provider — hands one confirmed order to its provider.

Every attempt leaves its trace on the order: a success records the tracking
number, a failure records the provider's message in ``sync_error``. Retryable
failures keep ``sync_status`` pending; terminal ones mark it failed.

An ambiguous failure (the provider may have created the parcel) is only
retried when the adapter collapses repeated creates for the same parcel
code. Otherwise the order is handed to an operator, since a blind retry could
ship a second parcel.
"""

import json

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from delivery.errors import AuthenticationError, ProviderNotConfigured
from delivery.jobs.job import Skipped, SyncJob
from delivery.order.queries import load_order
from delivery.order.sync import RecordParcelCreated, RecordSyncFailure
from delivery.provider.outcome import Outcome, RetryableFailure, Succeeded, TerminalFailure, call_adapter
from delivery.provider.port import OrderView

logger = structlog.get_logger(__name__)

MANUAL_VERIFICATION = "Provider may have created the parcel; verify with the provider before dispatching again"


def _details(raw_response) -> str | None:
    if isinstance(raw_response, (dict, list)):
        return json.dumps(raw_response, default=str)[:2000]
    return None


class ParcelDispatcher:
    def __init__(self, registry):
        self.registry = registry

    async def dispatch(self, job: SyncJob) -> Outcome:
        order = load_order(job.payload["order_id"], job.payload["tenant_id"])
        if order.is_synced:
            logger.info("dispatch_skipped", reason="already_synced", tracking_number=order.tracking_number)
            return Succeeded(Skipped(f"Already synced as {order.tracking_number}"))
        try:
            order.assert_dispatchable()
        except ValidationError as exc:
            logger.info("dispatch_skipped", reason=exc.messages)
            return Succeeded(Skipped(str(exc.messages)))

        slug = order.provider_slug
        try:
            async with self.registry.checkout(str(order.tenant_id), slug) as resolved:
                return await self._create_parcel(order, slug, resolved)
        except ProviderNotConfigured as exc:
            self._record_failure(order, slug, exc.message, terminal=True, attempted=False)
            return TerminalFailure(error=exc.message, kind=type(exc).__name__)

    async def _create_parcel(self, order, slug: str, resolved) -> Outcome:
        adapter = resolved.adapter
        outcome = await call_adapter(adapter.create_parcel(OrderView.from_order(order), resolved.config))

        if isinstance(outcome, Succeeded):
            result = outcome.value
            current_domain.process(
                RecordParcelCreated(
                    order_id=str(order.id),
                    tenant_id=str(order.tenant_id),
                    provider=slug,
                    tracking_number=result.tracking_number,
                    details=_details(result.raw_response),
                ),
                asynchronous=False,
            )
            logger.info("parcel_created", provider=slug, tracking_number=result.tracking_number)
            return outcome

        if isinstance(outcome, RetryableFailure) and outcome.ambiguous and not adapter.idempotent_create:
            error = f"{outcome.error}. {MANUAL_VERIFICATION}"
            self._record_failure(order, slug, error, terminal=True, ambiguous=True)
            return TerminalFailure(error=error, kind=outcome.kind, ambiguous=True)

        if outcome.kind == AuthenticationError.__name__:
            self.registry.invalidate(str(order.tenant_id), slug)

        terminal = isinstance(outcome, TerminalFailure)
        self._record_failure(order, slug, outcome.error, terminal=terminal, ambiguous=outcome.ambiguous)
        logger.warning("parcel_creation_failed", provider=slug, error=outcome.error, kind=outcome.kind, terminal=terminal)
        return outcome

    @staticmethod
    def _record_failure(order, provider, error, terminal, ambiguous=False, attempted=True) -> None:
        current_domain.process(
            RecordSyncFailure(
                order_id=str(order.id),
                tenant_id=str(order.tenant_id),
                provider=provider,
                error=error,
                terminal=terminal,
                ambiguous=ambiguous,
                attempted=attempted,
            ),
            asynchronous=False,
        )
