"""Playwright-backed session factory.

A single Playwright driver is started lazily and shared by every session;
each session gets its own Chromium process so tearing one down never
affects another agent's pooled page.
"""

from __future__ import annotations

import asyncio
import logging

from playwright.async_api import BrowserContext, Playwright, Route, async_playwright

from opconsole.browser.session_pool import BrowserSession, SessionProfile

logger = logging.getLogger(__name__)

_BLOCKED_RESOURCE_TYPES = frozenset({"image", "font", "media"})
_HEADLESS_VIEWPORT = {"width": 1920, "height": 1080}


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in _BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class PlaywrightSessionFactory:
    """Launch Chromium sessions configured from a ``SessionProfile``."""

    def __init__(self) -> None:
        self._playwright: Playwright | None = None
        self._start_lock = asyncio.Lock()

    async def _driver(self) -> Playwright:
        async with self._start_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
                logger.info("Playwright driver started")
        return self._playwright

    async def create(self, profile: SessionProfile) -> BrowserSession:
        """Launch a browser, open a context bound to the console and a page."""
        pw = await self._driver()
        browser = await pw.chromium.launch(
            headless=profile.headless,
            slow_mo=profile.action_delay_ms,
            args=None if profile.headless else ["--start-maximized"],
        )
        try:
            if profile.headless:
                context = await browser.new_context(base_url=profile.base_url, viewport=_HEADLESS_VIEWPORT)
            else:
                context = await browser.new_context(base_url=profile.base_url, no_viewport=True)
            await self.configure_context(context, profile)
            page = await context.new_page()
        except Exception:
            await browser.close()
            raise
        logger.debug("Browser session launched (headless=%s, base_url=%s)", profile.headless, profile.base_url)
        return BrowserSession(browser=browser, context=context, page=page)

    async def configure_context(self, context: BrowserContext, profile: SessionProfile) -> None:
        """Apply timeouts and, for headless sessions, resource blocking."""
        context.set_default_timeout(profile.timeout_ms)
        context.set_default_navigation_timeout(profile.timeout_ms)
        if not profile.block_resources:
            return
        if not profile.headless:
            logger.debug("Skipping resource blocking in headed mode")
            return
        await context.route("**/*", _block_heavy_resources)
        logger.debug("Resource blocking enabled for image/font/media")

    def apply_timeouts(self, session: BrowserSession, profile: SessionProfile) -> None:
        session.context.set_default_timeout(profile.timeout_ms)
        session.context.set_default_navigation_timeout(profile.timeout_ms)

    async def close(self, session: BrowserSession) -> None:
        """Close context then browser; each step is attempted independently."""
        try:
            await session.context.close()
        except Exception as exc:
            logger.debug("Context close failed: %s", exc)
        await session.browser.close()

    async def shutdown(self) -> None:
        """Stop the shared Playwright driver."""
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                logger.warning("Playwright driver stop error (non-fatal): %s", exc)
            finally:
                self._playwright = None
            logger.info("Playwright driver stopped")
