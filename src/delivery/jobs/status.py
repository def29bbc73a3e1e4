"""check-status — refreshes one order's status from its provider."""

from dataclasses import dataclass

import structlog
from protean.utils.globals import current_domain

from delivery.errors import AuthenticationError, ProviderNotConfigured
from delivery.jobs.job import Skipped, SyncJob
from delivery.order.queries import load_order
from delivery.order.tracking import RecordProviderStatus, RecordStatusCheckFailure
from delivery.provider.outcome import Outcome, Succeeded, TerminalFailure, call_adapter
from delivery.provider.port import Capability

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StatusUpdate:
    order_id: str
    provider_status: str
    mapped_status: str | None
    applied: bool


class StatusChecker:
    def __init__(self, registry):
        self.registry = registry

    async def check(self, job: SyncJob) -> Outcome:
        order = load_order(job.payload["order_id"], job.payload["tenant_id"])
        return await self.check_order(order)

    async def check_order(self, order) -> Outcome:
        if not order.needs_status_refresh:
            return Succeeded(Skipped(f"Order is {order.status} without a pending parcel"))

        slug = order.provider_slug
        try:
            async with self.registry.checkout(str(order.tenant_id), slug) as resolved:
                return await self._refresh(order, slug, resolved)
        except ProviderNotConfigured as exc:
            self._record_failure(order, exc.message)
            return TerminalFailure(error=exc.message, kind=type(exc).__name__)

    async def _refresh(self, order, slug: str, resolved) -> Outcome:
        adapter = resolved.adapter
        if not adapter.supports(Capability.CHECK_STATUS):
            return Succeeded(Skipped(f"{slug} does not report parcel status"))

        outcome = await call_adapter(adapter.check_status(order.tracking_number, resolved.config))
        if not isinstance(outcome, Succeeded):
            if outcome.kind == AuthenticationError.__name__:
                self.registry.invalidate(str(order.tenant_id), slug)
            self._record_failure(order, outcome.error)
            logger.warning("status_check_failed", provider=slug, error=outcome.error, kind=outcome.kind)
            return outcome

        provider_status = outcome.value.status
        mapped = adapter.normalize_status(provider_status)
        if mapped is None:
            logger.info("provider_status_unmapped", provider=slug, provider_status=provider_status)
        applied = current_domain.process(
            RecordProviderStatus(
                order_id=str(order.id),
                tenant_id=str(order.tenant_id),
                provider=slug,
                provider_status=provider_status,
                mapped_status=mapped,
            ),
            asynchronous=False,
        )
        return Succeeded(
            StatusUpdate(
                order_id=str(order.id),
                provider_status=provider_status,
                mapped_status=mapped,
                applied=bool(applied),
            )
        )

    @staticmethod
    def _record_failure(order, error: str) -> None:
        current_domain.process(
            RecordStatusCheckFailure(order_id=str(order.id), tenant_id=str(order.tenant_id), error=error),
            asynchronous=False,
        )
