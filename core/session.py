"""Session providers: authenticated, proxy-bound access to the remote API.

A session is opened for exactly one wallet through exactly one identity and
is released when the wallet is done.  Providers hand sessions out as async
context managers so that partially opened resources are closed even when
acquisition fails::

    async with provider.session(identity, "/tasks") as session:
        response = await session.request("GET", "/api/users/...")

Backends:
    HttpSessionProvider: ``aiohttp`` client routed through the proxy.
    BrowserSessionProvider: Camoufox/Playwright context (``browser.instance``).
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import urlparse

import aiohttp

from core.config import FarmSettings
from core.errors import ConfigError, SessionError
from core.identity import Identity

logger = logging.getLogger(__name__)

DEFAULT_HEADERS: Dict[str, str] = {
    "accept": "*/*",
    "accept-language": "en-GB,en-US;q=0.9,en;q=0.8",
    "cache-control": "no-cache",
    "pragma": "no-cache",
}

BLOCKED_TITLE_MARKERS = ("error", "blocked")

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


@dataclass
class ApiResponse:
    """Raw result of one API call."""

    status: int
    ok: bool
    data: Any = None
    reason: str = ""


class ApiSession(ABC):
    """Capability to issue calls to the remote API for one wallet."""

    def __init__(self, base_url: str, referer: Optional[str] = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.referer = referer

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def headers(self, has_body: bool) -> Dict[str, str]:
        headers = dict(DEFAULT_HEADERS)
        if has_body:
            headers["content-type"] = "application/json"
        if self.referer:
            headers["referer"] = self.referer
        return headers

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        """Send one request.

        Raises:
            SessionError: If the transport fails (the call never got an
                HTTP answer).
        """


class SessionProvider(ABC):
    """Opens one scoped :class:`ApiSession` per wallet."""

    def __init__(self, settings: FarmSettings) -> None:
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self.host = urlparse(self.base_url).hostname or ""

    async def start(self) -> None:
        """Acquire shared resources (e.g. a browser process)."""

    async def close(self) -> None:
        """Release shared resources."""

    @abstractmethod
    def session(self, identity: Identity, target_path: str):
        """Async context manager yielding an :class:`ApiSession`.

        Raises:
            SessionError: If the landing page cannot be reached, redirects
                off the service host, or shows an error/blocked page.
        """

    def check_landing(self, url: str, title: Optional[str], status: int = 200) -> None:
        """Validate where the warm-up navigation ended up."""
        landed = urlparse(url).hostname or ""
        if self.host and not (landed == self.host or landed.endswith("." + self.host)):
            raise SessionError(f"Redirect: {url}")
        if status >= 400:
            raise SessionError(f"Landing page answered HTTP {status}")
        lowered = (title or "").lower()
        if any(marker in lowered for marker in BLOCKED_TITLE_MARKERS):
            raise SessionError(f"Error page: {title}")


class HttpSession(ApiSession):
    """:class:`ApiSession` backed by an ``aiohttp.ClientSession``."""

    def __init__(
        self,
        client: aiohttp.ClientSession,
        base_url: str,
        identity: Identity,
        referer: Optional[str] = None,
    ) -> None:
        super().__init__(base_url, referer)
        self.client = client
        self.identity = identity

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        proxy = self.identity.proxy
        try:
            async with self.client.request(
                method,
                self.url_for(path),
                params=params,
                json=json,
                headers=self.headers(json is not None),
                proxy=proxy.server,
                proxy_auth=_proxy_auth(self.identity),
            ) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                return ApiResponse(
                    status=resp.status,
                    ok=200 <= resp.status < 300,
                    data=data,
                    reason=resp.reason or "",
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SessionError(f"{method} {path} failed: {exc}") from exc


def _proxy_auth(identity: Identity) -> Optional[aiohttp.BasicAuth]:
    proxy = identity.proxy
    if proxy.username:
        return aiohttp.BasicAuth(proxy.username, proxy.password)
    return None


class HttpSessionProvider(SessionProvider):
    """Plain HTTP sessions: one ``aiohttp`` client per wallet.

    The landing page is fetched once through the proxy so the service can
    set its cookies; the cookie jar then travels with every API call.
    """

    @asynccontextmanager
    async def session(self, identity: Identity, target_path: str) -> AsyncIterator[HttpSession]:
        landing = f"{self.base_url}{target_path}"
        headers = {"user-agent": identity.user_agent} if identity.user_agent else {}
        client = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.settings.timeout / 1000),
        )
        try:
            try:
                async with client.get(
                    landing,
                    proxy=identity.proxy.server,
                    proxy_auth=_proxy_auth(identity),
                ) as resp:
                    final_url = str(resp.url)
                    status = resp.status
                    body = await resp.text()
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                raise SessionError(f"Landing page unreachable via {identity.proxy.masked()}: {exc}") from exc

            match = _TITLE_RE.search(body or "")
            self.check_landing(final_url, match.group(1).strip() if match else None, status)
            yield HttpSession(client, self.base_url, identity, referer=landing)
        finally:
            await client.close()


def create_session_provider(settings: FarmSettings) -> SessionProvider:
    """Build the provider named by ``settings.session_backend``.

    Raises:
        ConfigError: For an unknown backend name.
    """
    backend = (settings.session_backend or "browser").lower()
    if backend == "http":
        return HttpSessionProvider(settings)
    if backend == "browser":
        # Deferred: pulls in Playwright/Camoufox
        from browser.instance import BrowserSessionProvider
        return BrowserSessionProvider(settings)
    raise ConfigError(f"Unknown session backend: {settings.session_backend}")
