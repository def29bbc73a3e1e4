"""httpx transport shared by the HTTP-based adapters.

Translates transport failures into the engine's error taxonomy. A failure is
``ambiguous`` when the request may have reached the provider: a read timeout
or a 5xx answer on a create call leaves the parcel's existence unknown, while
a refused connection does not.
"""

import json

import httpx
import structlog

from delivery.errors import AuthenticationError, ProtocolError, TransportError
from delivery.provider.port import ProviderAdapter

logger = structlog.get_logger(__name__)

_decoder = json.JSONDecoder()


def parse_first_json(body: str, provider: str | None = None):
    """Parse the first JSON value of ``body`` and ignore anything after it.

    Some providers answer with two objects glued together (``{...}{...}``);
    the first one carries the result.
    """
    text = (body or "").lstrip("\ufeff \t\r\n")
    try:
        value, _end = _decoder.raw_decode(text)
    except ValueError:
        raise ProtocolError("Response is not valid JSON", provider=provider, body=(body or "")[:500]) from None
    return value


def dig(data, *path, provider: str | None = None):
    """Follow ``path`` through nested dicts and lists or raise ProtocolError."""
    current = data
    for key in path:
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError):
            trail = ".".join(str(part) for part in path)
            raise ProtocolError(f"Response has no {trail}", provider=provider, body=str(data)[:500]) from None
    return current


class HttpAdapter(ProviderAdapter):
    """Base class for adapters talking to their provider over HTTPS."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, url: str, *, config=None, creating: bool = False, **kwargs) -> httpx.Response:
        timeout = getattr(config, "timeout", None) or self.timeout
        try:
            response = await self.client.request(method, url, timeout=timeout, **kwargs)
        except (httpx.ConnectTimeout, httpx.ConnectError, httpx.PoolTimeout) as exc:
            raise TransportError(f"Could not reach {self.slug}: {exc.__class__.__name__}", provider=self.slug) from exc
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"{self.slug} did not answer in time",
                provider=self.slug,
                ambiguous=creating,
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"Connection to {self.slug} failed: {exc.__class__.__name__}",
                provider=self.slug,
                ambiguous=creating,
            ) from exc

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{self.slug} refused the credentials (HTTP {response.status_code})",
                provider=self.slug,
            )
        if response.status_code == 429:
            raise TransportError(f"{self.slug} is rate limiting requests", provider=self.slug, status_code=429)
        if response.status_code >= 500:
            raise TransportError(
                f"{self.slug} returned HTTP {response.status_code}",
                provider=self.slug,
                ambiguous=creating,
                status_code=response.status_code,
            )
        logger.debug("provider_response", provider=self.slug, method=method, status_code=response.status_code)
        return response

    def json(self, response: httpx.Response) -> dict:
        body = parse_first_json(response.text, provider=self.slug)
        if not isinstance(body, dict):
            raise ProtocolError("Expected a JSON object", provider=self.slug, body=response.text[:500])
        return body
