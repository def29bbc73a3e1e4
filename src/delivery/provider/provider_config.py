"""ProviderConfig aggregate — a tenant's settings for one delivery provider.

Credentials are stored only as a Fernet token. Commands carry the token, never
the plain bundle; ``configure_provider`` encrypts before submitting.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery


class ApiType(Enum):
    JSON = "json"
    FORM = "form"
    QUERY = "query"
    HTML = "html"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@delivery.event(part_of="ProviderConfig")
class ProviderConfigured:
    __version__ = 1

    tenant_id = Identifier(required=True)
    slug = String(required=True)
    base_url = String(required=True)
    configured_at = DateTime(required=True)


@delivery.event(part_of="ProviderConfig")
class ProviderDisabled:
    __version__ = 1

    tenant_id = Identifier(required=True)
    slug = String(required=True)
    disabled_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------
@delivery.aggregate
class ProviderConfig:
    tenant_id = Identifier(required=True)
    slug = String(required=True, max_length=50)
    api_type = String(max_length=10, choices=ApiType, default=ApiType.JSON.value)
    base_url = String(required=True, max_length=500)
    encrypted_credentials = Text(required=True)
    options = Text()  # JSON object of non-secret settings (customer id, hub id, ...)
    timeout = Float()
    is_enabled = Boolean(default=True)
    created_at = DateTime()
    updated_at = DateTime()

    def __repr__(self) -> str:
        return f"<ProviderConfig {self.tenant_id}/{self.slug} enabled={self.is_enabled}>"

    @property
    def options_dict(self) -> dict:
        return json.loads(self.options) if self.options else {}

    def reconfigure(self, base_url, api_type, encrypted_credentials, options=None, timeout=None) -> None:
        now = datetime.now(UTC)
        self.base_url = base_url.rstrip("/")
        self.api_type = api_type
        self.encrypted_credentials = encrypted_credentials
        self.options = options
        self.timeout = timeout
        self.is_enabled = True
        self.updated_at = now
        self.raise_(
            ProviderConfigured(
                tenant_id=str(self.tenant_id),
                slug=self.slug,
                base_url=self.base_url,
                configured_at=now,
            )
        )

    def disable(self) -> None:
        if not self.is_enabled:
            raise ValidationError({"is_enabled": [f"{self.slug} is already disabled"]})
        now = datetime.now(UTC)
        self.is_enabled = False
        self.updated_at = now
        self.raise_(ProviderDisabled(tenant_id=str(self.tenant_id), slug=self.slug, disabled_at=now))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@delivery.command(part_of="ProviderConfig")
class ConfigureProvider:
    tenant_id = Identifier(required=True)
    slug = String(required=True, max_length=50)
    base_url = String(required=True, max_length=500)
    api_type = String(max_length=10, choices=ApiType, default=ApiType.JSON.value)
    encrypted_credentials = Text(required=True)
    options = Text()
    timeout = Float()


@delivery.command(part_of="ProviderConfig")
class DisableProvider:
    tenant_id = Identifier(required=True)
    slug = String(required=True, max_length=50)


def find_provider_config(tenant_id: str, slug: str) -> ProviderConfig | None:
    return (
        current_domain.repository_for(ProviderConfig)
        ._dao.query.filter(tenant_id=str(tenant_id), slug=slug)
        .all()
        .first
    )


def get_enabled_providers(tenant_id: str) -> list[ProviderConfig]:
    configs = (
        current_domain.repository_for(ProviderConfig)
        ._dao.query.filter(tenant_id=str(tenant_id), is_enabled=True)
        .limit(100)
        .all()
        .items
    )
    return sorted(configs, key=lambda config: config.slug)


@delivery.command_handler(part_of=ProviderConfig)
class ProviderConfigHandler:
    @handle(ConfigureProvider)
    def configure_provider(self, command):
        repo = current_domain.repository_for(ProviderConfig)
        config = find_provider_config(command.tenant_id, command.slug)
        if config is None:
            config = ProviderConfig(
                tenant_id=str(command.tenant_id),
                slug=command.slug,
                base_url=command.base_url,
                encrypted_credentials=command.encrypted_credentials,
                created_at=datetime.now(UTC),
            )
        config.reconfigure(
            base_url=command.base_url,
            api_type=command.api_type,
            encrypted_credentials=command.encrypted_credentials,
            options=command.options,
            timeout=command.timeout,
        )
        repo.add(config)
        _invalidate(command.tenant_id, command.slug)
        return str(config.id)

    @handle(DisableProvider)
    def disable_provider(self, command):
        config = find_provider_config(command.tenant_id, command.slug)
        if config is None:
            raise ObjectNotFoundError(f"{command.slug} is not configured for tenant {command.tenant_id}")
        config.disable()
        current_domain.repository_for(ProviderConfig).add(config)
        _invalidate(command.tenant_id, command.slug)


def _invalidate(tenant_id, slug) -> None:
    from delivery.provider import get_registry

    get_registry().invalidate(str(tenant_id), slug)


def configure_provider(
    tenant_id: str,
    slug: str,
    base_url: str,
    credentials: dict,
    api_type: str = ApiType.JSON.value,
    options: dict | None = None,
    timeout: float | None = None,
) -> str:
    """Encrypt ``credentials`` with the registry's key and store the configuration."""
    from delivery.provider import get_registry

    return current_domain.process(
        ConfigureProvider(
            tenant_id=tenant_id,
            slug=slug,
            base_url=base_url,
            api_type=api_type,
            encrypted_credentials=get_registry().encrypt_credentials(credentials, provider=slug),
            options=json.dumps(options) if options else None,
            timeout=timeout,
        ),
        asynchronous=False,
    )
