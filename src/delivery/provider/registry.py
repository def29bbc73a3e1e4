"""Adapter registry — resolves ``(tenant, provider slug)`` to a ready adapter.

Credentials are decrypted once per resolution; the decrypted configuration
and the adapter (with its live session, if any) are kept in a keyed store
until invalidated. Invalidation happens when the tenant reconfigures or
disables the provider, and when the provider refuses the credentials.

Jobs borrow an adapter through ``checkout``. An evicted adapter is closed as
soon as no checkout holds it any more, so its HTTP client does not outlive
the calls already in flight.
"""

from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import structlog

from delivery.config import EngineSettings
from delivery.errors import AuthenticationError, DeliveryError, ProviderNotConfigured
from delivery.provider.cathedis import CathedisAdapter
from delivery.provider.coliix import ColiixAdapter
from delivery.provider.credentials import CredentialCipher
from delivery.provider.fake_adapter import FakeProvider
from delivery.provider.ozon import OzonExpressAdapter
from delivery.provider.port import ProviderAdapter
from delivery.provider.provider_config import find_provider_config
from delivery.provider.sendit import SenditAdapter
from delivery.provider.vitex import VitexAdapter

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolvedConfig:
    tenant_id: str
    slug: str
    base_url: str
    api_type: str = "json"
    credentials: dict = field(default_factory=dict, repr=False)
    options: dict = field(default_factory=dict)
    webhook_secret: str | None = field(default=None, repr=False)
    timeout: float = 30.0


@dataclass(frozen=True)
class ResolvedProvider:
    adapter: ProviderAdapter
    config: ResolvedConfig


@dataclass(frozen=True)
class ConnectionCheck:
    success: bool
    message: str


AdapterFactory = Callable[[ResolvedConfig], ProviderAdapter]

DEFAULT_FACTORIES: dict[str, AdapterFactory] = {
    "coliix": lambda config: ColiixAdapter(timeout=config.timeout),
    "cathedis": lambda config: CathedisAdapter(timeout=config.timeout),
    "ozonexpress": lambda config: OzonExpressAdapter(timeout=config.timeout),
    "sendit": lambda config: SenditAdapter(timeout=config.timeout),
    "vitex": lambda config: VitexAdapter(timeout=config.timeout),
    "fake": lambda config: FakeProvider(slug=config.slug),
}


class AdapterRegistry:
    def __init__(
        self,
        settings: EngineSettings | None = None,
        cipher: CredentialCipher | None = None,
        factories: dict[str, AdapterFactory] | None = None,
        config_source: Callable | None = None,
    ):
        self.settings = settings or EngineSettings()
        if cipher is None and self.settings.credentials_key:
            cipher = CredentialCipher(self.settings.credentials_key)
        self._cipher = cipher
        self._factories = dict(DEFAULT_FACTORIES if factories is None else factories)
        self._config_source = config_source or find_provider_config
        self._entries: dict[tuple[str, str], ResolvedProvider] = {}
        self._retired: list[ProviderAdapter] = []
        self._borrowed: Counter[int] = Counter()
        self.resolutions = 0

    def register_factory(self, slug: str, factory: AdapterFactory) -> None:
        self._factories[slug] = factory

    def _require_cipher(self, provider: str | None) -> CredentialCipher:
        if self._cipher is None:
            raise ProviderNotConfigured("PROVIDER_CREDENTIALS_KEY is not set", provider=provider)
        return self._cipher

    def encrypt_credentials(self, credentials: dict, provider: str | None = None) -> str:
        return self._require_cipher(provider).encrypt(credentials)

    def is_cached(self, tenant_id: str, slug: str) -> bool:
        return (str(tenant_id), slug) in self._entries

    def resolve(self, tenant_id: str, slug: str) -> ResolvedProvider:
        key = (str(tenant_id), slug)
        entry = self._entries.get(key)
        if entry is not None:
            return entry

        record = self._config_source(str(tenant_id), slug)
        if record is None or not record.is_enabled:
            raise ProviderNotConfigured(f"{slug} is not enabled for this tenant", provider=slug)
        factory = self._factories.get(slug)
        if factory is None:
            raise ProviderNotConfigured(f"No adapter is available for {slug}", provider=slug)

        credentials = self._require_cipher(slug).decrypt(record.encrypted_credentials, provider=slug)
        config = ResolvedConfig(
            tenant_id=str(tenant_id),
            slug=slug,
            base_url=record.base_url.rstrip("/"),
            api_type=record.api_type,
            credentials=credentials,
            options=record.options_dict,
            webhook_secret=credentials.get("webhook_secret"),
            timeout=record.timeout or self.settings.provider_timeout,
        )
        entry = ResolvedProvider(adapter=factory(config), config=config)
        self._entries[key] = entry
        self.resolutions += 1
        logger.info("provider_resolved", tenant_id=str(tenant_id), provider=slug)
        return entry

    def invalidate(self, tenant_id: str, slug: str) -> None:
        entry = self._entries.pop((str(tenant_id), slug), None)
        if entry is not None:
            if all(adapter is not entry.adapter for adapter in self._retired):
                self._retired.append(entry.adapter)
            logger.info("provider_invalidated", tenant_id=str(tenant_id), provider=slug)

    @asynccontextmanager
    async def checkout(self, tenant_id: str, slug: str) -> AsyncIterator[ResolvedProvider]:
        """Resolve and hold the adapter for the duration of the block."""
        resolved = self.resolve(tenant_id, slug)
        self._borrowed[id(resolved.adapter)] += 1
        try:
            yield resolved
        finally:
            self._borrowed[id(resolved.adapter)] -= 1
            if self._borrowed[id(resolved.adapter)] <= 0:
                del self._borrowed[id(resolved.adapter)]
            await self.close_retired()

    @property
    def retired(self) -> int:
        return len(self._retired)

    async def close_retired(self) -> None:
        """Close evicted adapters that no checkout holds and no live entry reuses."""
        live = {id(entry.adapter) for entry in self._entries.values()}
        idle = [
            adapter for adapter in self._retired if id(adapter) not in self._borrowed and id(adapter) not in live
        ]
        self._retired = [
            adapter for adapter in self._retired if id(adapter) in self._borrowed and id(adapter) not in live
        ]
        for adapter in idle:
            await adapter.aclose()
        if idle:
            logger.debug("retired_adapters_closed", count=len(idle))

    async def test_connection(self, tenant_id: str, slug: str) -> ConnectionCheck:
        try:
            async with self.checkout(tenant_id, slug) as resolved:
                try:
                    await resolved.adapter.authenticate(resolved.config)
                except AuthenticationError:
                    self.invalidate(tenant_id, slug)
                    raise
        except DeliveryError as exc:
            logger.warning("provider_connection_failed", tenant_id=str(tenant_id), provider=slug, error=exc.message)
            return ConnectionCheck(success=False, message=exc.message)
        return ConnectionCheck(success=True, message="Connection successful")

    async def aclose(self) -> None:
        adapters = {id(adapter): adapter for adapter in self._retired}
        adapters.update((id(entry.adapter), entry.adapter) for entry in self._entries.values())
        self._retired = []
        self._entries.clear()
        self._borrowed.clear()
        for adapter in adapters.values():
            await adapter.aclose()
