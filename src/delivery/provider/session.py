"""Login sessions for providers that authenticate with a cookie.

A ``ProviderSession`` belongs to one adapter instance, which the registry
caches per tenant and provider, so every job for that pair shares it. The
lock makes a refresh triggered by one job visible to the others: a job that
arrives with an already replaced token gets the new one instead of logging
in again.
"""

import asyncio
import time
from abc import abstractmethod
from collections.abc import Awaitable, Callable

import structlog

from delivery.errors import AuthenticationError
from delivery.provider.http import HttpAdapter

logger = structlog.get_logger(__name__)

Login = Callable[[], Awaitable[str]]


class ProviderSession:
    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token: str | None = None
        self._obtained_at = 0.0
        self.logins = 0

    @property
    def token(self) -> str | None:
        return self._token

    def _fresh(self) -> bool:
        return self._token is not None and self._clock() - self._obtained_at < self.ttl

    async def _login(self, login: Login) -> str:
        self._token = None
        token = await login()
        self._token = token
        self._obtained_at = self._clock()
        self.logins += 1
        return token

    async def get(self, login: Login) -> str:
        async with self._lock:
            if self._fresh():
                return self._token
            return await self._login(login)

    async def refresh(self, stale_token: str, login: Login) -> str:
        """Replace ``stale_token`` unless another job already did."""
        async with self._lock:
            if self._fresh() and self._token != stale_token:
                return self._token
            return await self._login(login)

    def invalidate(self) -> None:
        self._token = None


class SessionAdapter(HttpAdapter):
    """HTTP adapter whose calls need a session obtained from a login call."""

    session_ttl = 20 * 60.0

    def __init__(self, client=None, timeout: float = 30.0, session: ProviderSession | None = None):
        super().__init__(client=client, timeout=timeout)
        self.session = session or ProviderSession(ttl=self.session_ttl)

    @abstractmethod
    async def login(self, config) -> str:
        """Log in and return the session cookie header value."""
        ...

    async def authenticate(self, config) -> str:
        return await self.session.get(lambda: self.login(config))

    async def with_session(self, config, call: Callable[[str], Awaitable]):
        """Run ``call(cookie)``; on an expired session log in once more and retry once."""
        token = await self.authenticate(config)
        try:
            return await call(token)
        except AuthenticationError:
            logger.info("provider_session_expired", provider=self.slug)
            token = await self.session.refresh(token, lambda: self.login(config))
            return await call(token)
