"""Tagged outcome of one adapter call.

Job handlers never see adapter exceptions: ``call_adapter`` awaits the call
and classifies whatever happened into one of three outcomes, which the
orchestrator's retry policy then acts on.
"""

from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any

from delivery.errors import DeliveryError, ProviderRejected
from delivery.provider.port import ParcelResult, StatusResult


@dataclass(frozen=True)
class Succeeded:
    value: Any = field(repr=False)


@dataclass(frozen=True)
class RetryableFailure:
    error: str
    kind: str
    ambiguous: bool = False


@dataclass(frozen=True)
class TerminalFailure:
    error: str
    kind: str
    ambiguous: bool = False


Outcome = Succeeded | RetryableFailure | TerminalFailure


async def call_adapter(call: Awaitable) -> Outcome:
    try:
        result = await call
    except DeliveryError as exc:
        kind = type(exc).__name__
        ambiguous = getattr(exc, "ambiguous", False)
        if exc.retryable:
            return RetryableFailure(error=exc.message, kind=kind, ambiguous=ambiguous)
        return TerminalFailure(error=exc.message, kind=kind, ambiguous=ambiguous)
    except NotImplementedError as exc:
        return TerminalFailure(error=str(exc), kind="Unsupported")

    if isinstance(result, (ParcelResult, StatusResult)) and not result.success:
        # The provider's own words, verbatim
        return TerminalFailure(error=result.error or "Provider refused the request", kind=ProviderRejected.__name__)
    return Succeeded(result)
