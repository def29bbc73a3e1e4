"""Error taxonomy for provider integrations.

Adapters raise these; ``delivery.provider.outcome.call_adapter`` turns them
into tagged outcomes so that no exception crosses a job boundary.

    TransportError         network, timeout, 5xx            retryable
    ProtocolError          unparseable / unexpected body    retryable (bounded)
    ProviderRejected       well-formed business refusal     terminal
    ProviderNotConfigured  tenant has not enabled provider  terminal
    AuthenticationError    credentials refused              terminal
"""

from dataclasses import dataclass, field


class DeliveryError(Exception):
    """Base class for all provider-integration failures."""

    retryable = False

    def __init__(self, message: str, *, provider: str | None = None):
        super().__init__(message)
        self.message = message
        self.provider = provider


class TransportError(DeliveryError):
    """The call did not complete: connection failure, timeout or 5xx.

    ``ambiguous`` is set when the request may have reached the provider, so a
    create call could have succeeded even though no answer came back.
    """

    retryable = True

    def __init__(self, message: str, *, provider: str | None = None, ambiguous: bool = False, status_code: int | None = None):
        super().__init__(message, provider=provider)
        self.ambiguous = ambiguous
        self.status_code = status_code


class ProtocolError(DeliveryError):
    """The provider answered, but not in a shape the adapter understands."""

    retryable = True

    def __init__(self, message: str, *, provider: str | None = None, ambiguous: bool = False, body: str | None = None):
        super().__init__(message, provider=provider)
        self.ambiguous = ambiguous
        self.body = body


class ProviderRejected(DeliveryError):
    """The provider refused the request; its message is kept verbatim."""


class ProviderNotConfigured(DeliveryError):
    """The tenant has not enabled (or has no adapter for) this provider."""


class AuthenticationError(DeliveryError):
    """The provider refused the configured credentials or session."""


@dataclass(frozen=True)
class DuplicateSuspected:
    """Advisory raised by the duplicate detector. Never blocks creation."""

    order_id: str
    candidates: tuple = field(default_factory=tuple)

    @property
    def count(self) -> int:
        return len(self.candidates)
