"""Fake provider adapter — deterministic provider for testing and development.

Outcomes can be scripted call by call: a tracking number, a ``ParcelResult``
or an exception to raise. Without a script every create succeeds with a
generated tracking number and every parcel reports ``IN_TRANSIT``. Calls are
recorded with timestamps, and the highest number of concurrent calls is
tracked.
"""

import asyncio
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from uuid import uuid4

from delivery.provider.port import Capability, OrderView, ParcelResult, ProviderAdapter, StatusResult


class FakeProvider(ProviderAdapter):
    capabilities = frozenset({Capability.CREATE_PARCEL, Capability.CHECK_STATUS, Capability.WEBHOOK})
    status_map = {
        "returned": ("RETURNED",),
        "cancelled": ("CANCELLED",),
        "delivered": ("DELIVERED",),
        "shipped": ("IN_TRANSIT", "OUT_FOR_DELIVERY"),
        "processing": ("PICKED_UP",),
        "confirmed": ("NEW",),
    }

    def __init__(self, slug: str = "fake", latency: float = 0.0, idempotent: bool = True):
        self.slug = slug
        self.latency = latency
        self.idempotent_create = idempotent
        self.default_status = "IN_TRANSIT"
        self.create_script: deque = deque()
        self.status_script: dict[str, deque] = defaultdict(deque)
        self.create_calls: list[OrderView] = []
        self.status_calls: list[tuple[str, float]] = []
        self.parcels: dict[str, str] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.authentications = 0

    def script_create(self, *outcomes) -> None:
        """Queue outcomes for the next create calls."""
        self.create_script.extend(outcomes)

    def script_status(self, tracking_number: str, *outcomes) -> None:
        """Queue outcomes for the next status checks of ``tracking_number``."""
        self.status_script[tracking_number].extend(outcomes)

    @asynccontextmanager
    async def _call(self):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            yield
        finally:
            self.in_flight -= 1

    async def authenticate(self, config) -> None:
        self.authentications += 1

    async def create_parcel(self, order: OrderView, config) -> ParcelResult:
        self.create_calls.append(order)
        async with self._call():
            if self.idempotent_create and order.parcel_code in self.parcels:
                return ParcelResult(success=True, tracking_number=self.parcels[order.parcel_code])

            outcome = self.create_script.popleft() if self.create_script else f"FAKE-{uuid4().hex[:10].upper()}"
            if isinstance(outcome, BaseException):
                raise outcome
            result = outcome if isinstance(outcome, ParcelResult) else ParcelResult(success=True, tracking_number=outcome)
            if result.success and order.parcel_code:
                self.parcels[order.parcel_code] = result.tracking_number
            return result

    async def check_status(self, tracking_number: str, config) -> StatusResult:
        self.status_calls.append((tracking_number, time.monotonic()))
        async with self._call():
            script = self.status_script.get(tracking_number)
            outcome = script.popleft() if script else self.default_status
            if isinstance(outcome, BaseException):
                raise outcome
            if isinstance(outcome, StatusResult):
                return outcome
            return StatusResult(success=True, status=outcome)
