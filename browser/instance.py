"""Camoufox-backed session provider for Bubuverse Farm.

Provides :class:`BrowserSessionProvider`, which launches a single Camoufox
(hardened Firefox) process per run and opens one isolated ``BrowserContext``
per wallet.  Each context is bound to the wallet's proxy and User-Agent, so
cookies set by the service's bot challenge on the landing page are scoped to
that wallet only.

API calls are issued through ``page.request`` which shares the context's
cookie jar; no cookie values are ever copied out of the browser.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from browserforge.fingerprints import Screen
from camoufox.async_api import AsyncCamoufox
from playwright.async_api import BrowserContext, Error as PlaywrightError, Page

from core.config import FarmSettings
from core.errors import SessionError
from core.identity import Identity
from core.session import ApiResponse, ApiSession, SessionProvider

logger = logging.getLogger(__name__)


class PageSession(ApiSession):
    """:class:`ApiSession` that issues requests from a warmed-up page."""

    def __init__(self, page: Page, base_url: str, referer: Optional[str] = None) -> None:
        super().__init__(base_url, referer)
        self.page = page

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        try:
            resp = await self.page.request.fetch(
                self.url_for(path),
                method=method,
                params=params,
                data=json,
                headers=self.headers(json is not None),
            )
        except PlaywrightError as exc:
            raise SessionError(f"{method} {path} failed: {exc}") from exc

        try:
            data = await resp.json()
        except (PlaywrightError, ValueError):
            data = None
        return ApiResponse(
            status=resp.status,
            ok=resp.ok,
            data=data,
            reason=resp.status_text or "",
        )


class BrowserSessionProvider(SessionProvider):
    """Manages the Camoufox process and per-wallet contexts.

    The browser is launched lazily on first use (or by :meth:`start`) and
    kept for the whole run.  Contexts are always closed when the wallet's
    session scope exits, including when the warm-up navigation fails.
    """

    def __init__(
        self,
        settings: FarmSettings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        super().__init__(settings)
        self.headless = settings.headless
        self.timeout = settings.timeout
        self.settle_seconds = settings.session_settle_seconds
        self._sleep = sleep
        self.camoufox: Optional[AsyncCamoufox] = None
        self.browser = None

    async def start(self) -> None:
        """Launch Camoufox.

        Launched WITHOUT a global proxy so each context can carry its own.
        """
        if self.browser:
            return
        logger.info("Launching Camoufox (Headless: %s)...", self.headless)

        kwargs: Dict[str, Any] = {
            "headless": self.headless,
            "geoip": True,
            "humanize": True,
            "block_images": True,
        }
        # Low-resolution headless defaults break header generation
        if self.headless:
            kwargs["screen"] = Screen(max_width=1920, max_height=1080)

        try:
            self.camoufox = AsyncCamoufox(**kwargs)
            self.browser = await self.camoufox.__aenter__()
        except Exception as exc:
            if "GeoLite2-City.mmdb" not in str(exc):
                raise
            logger.warning("GeoIP database invalid or missing. Retrying launch with geoip disabled.")
            kwargs["geoip"] = False
            self.camoufox = AsyncCamoufox(**kwargs)
            self.browser = await self.camoufox.__aenter__()

    async def close(self) -> None:
        """Shut down the browser."""
        if not self.browser:
            return
        try:
            await self.camoufox.__aexit__(None, None, None)
        except Exception as exc:
            logger.debug("Error during browser exit: %s", exc)
        self.browser = None
        self.camoufox = None
        logger.info("Browser closed.")

    async def _new_context(self, identity: Identity) -> BrowserContext:
        context_args: Dict[str, Any] = {"proxy": identity.proxy.to_playwright()}
        if identity.user_agent:
            context_args["user_agent"] = identity.user_agent
        logger.debug("Creating isolated context (Proxy: %s)", identity.proxy.masked())
        context = await self.browser.new_context(**context_args)
        context.set_default_timeout(self.timeout)
        return context

    async def _safe_close_context(self, context: BrowserContext) -> None:
        try:
            await context.close()
        except PlaywrightError as exc:
            logger.debug("Context already closed: %s", exc)

    @asynccontextmanager
    async def session(self, identity: Identity, target_path: str) -> AsyncIterator[PageSession]:
        if not self.browser:
            await self.start()

        landing = f"{self.base_url}{target_path}"
        context: Optional[BrowserContext] = None
        try:
            try:
                context = await self._new_context(identity)
                page = await context.new_page()
                await page.goto(landing, wait_until="networkidle", timeout=self.timeout)
                # Let the bot challenge finish setting cookies
                await self._sleep(self.settle_seconds)
                title = await page.title()
            except PlaywrightError as exc:
                raise SessionError(
                    f"Landing page failed via {identity.proxy.masked()}: {exc}"
                ) from exc

            self.check_landing(page.url, title)
            yield PageSession(page, self.base_url, referer=landing)
        finally:
            if context is not None:
                await self._safe_close_context(context)
