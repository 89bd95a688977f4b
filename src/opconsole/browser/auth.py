"""Agent login against the operator console.

:func:`ensure_authenticated` fills the login form and waits until the
console shows a stable authenticated shell. :func:`authenticate_with_retry`
wraps any login coroutine with the retry policy: one retry for transient
failures, none when the page text says the credentials were rejected.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from urllib.parse import urljoin, urlparse

from playwright.async_api import Locator, Page

from opconsole.browser.polling import Sleep, poll_until
from opconsole.exceptions import AuthenticationError
from opconsole.settings.config import SiteSettings

logger = logging.getLogger(__name__)

NON_RETRYABLE_LOGIN_ERROR_RE = re.compile(
    r"usuario no autorizado|contrase(?:n|ñ)a\s+no\s+corregida|credenciales incorrectas|password",
    re.IGNORECASE,
)
FALLBACK_AUTH_ERROR_RE = re.compile(
    r"usuario no autorizado|no autorizado|contrase(?:n|ñ)a\s+no\s+corregida|credenciales incorrectas",
    re.IGNORECASE,
)
AUTHENTICATED_UI_RE = re.compile(
    r"mis estad[ií]sticas|usuarios|reportes financieros|informes de jugadores|finanzas",
    re.IGNORECASE,
)

_POLL_MS = 100


def is_non_retryable(message: str) -> bool:
    """Return ``True`` if *message* reports rejected credentials."""
    return NON_RETRYABLE_LOGIN_ERROR_RE.search(message) is not None


# ---------------------------------------------------------------------------
# Page checks
# ---------------------------------------------------------------------------


async def _is_visible(locator: Locator) -> bool:
    try:
        return await locator.is_visible()
    except Exception:
        return False


def _on_login_path(page: Page) -> bool:
    try:
        return "login" in urlparse(page.url).path.lower()
    except ValueError:
        return True


async def _first_visible_control(page: Page, selectors: list[str], timeout_ms: int) -> tuple[str, Locator] | None:
    async def check() -> tuple[str, Locator] | None:
        for selector in selectors:
            locator = page.locator(selector)
            for i in range(await locator.count()):
                candidate = locator.nth(i)
                if await _is_visible(candidate):
                    return selector, candidate
        return None

    return await poll_until(check, timeout_ms=timeout_ms, interval_ms=_POLL_MS)


async def _has_login_form(page: Page, site: SiteSettings) -> bool:
    username = await _first_visible_control(page, site.username_selectors, 250)
    password = await _first_visible_control(page, site.password_selectors, 250)
    return bool(username and password)


async def _has_authenticated_shell(page: Page) -> bool:
    return await _is_visible(page.locator("body").get_by_text(AUTHENTICATED_UI_RE).first)


async def _read_auth_error(page: Page, site: SiteSettings) -> str | None:
    locators = [page.locator("body").get_by_text(FALLBACK_AUTH_ERROR_RE).first]
    if site.error_selector:
        locators.insert(0, page.locator(site.error_selector).first)
    for locator in locators:
        if await _is_visible(locator):
            text = (await locator.text_content() or "").strip()
            return text or "login error detected"
    return None


async def _looks_authenticated(page: Page, site: SiteSettings) -> bool:
    login_form = await _has_login_form(page, site)
    shell = await _has_authenticated_shell(page)
    return (not _on_login_path(page) or shell) and not login_form


async def _wait_for_authenticated_state(page: Page, site: SiteSettings, timeout_ms: int) -> None:
    """Wait until the authenticated signal holds for the stable window."""
    stable_sec = site.auth_stable_window_ms / 1000
    success_since: float | None = None
    last_error: str | None = None

    async def check() -> bool:
        nonlocal success_since, last_error
        signal = await _looks_authenticated(page, site)
        if site.success_selector and await _is_visible(page.locator(site.success_selector).first):
            signal = True
        if not signal:
            success_since = None
        elif success_since is None:
            success_since = time.monotonic()
        if success_since is not None and time.monotonic() - success_since >= stable_sec:
            return True
        error = await _read_auth_error(page, site)
        if error:
            last_error = error
        return False

    if await poll_until(check, timeout_ms=timeout_ms, interval_ms=_POLL_MS):
        return

    if last_error:
        raise AuthenticationError(last_error, retryable=not is_non_retryable(last_error))
    error = await _read_auth_error(page, site)
    if error and await _has_login_form(page, site) and not await _has_authenticated_shell(page):
        raise AuthenticationError(error, retryable=not is_non_retryable(error))
    if await _has_login_form(page, site):
        raise AuthenticationError("Authentication did not complete: login form is still visible")
    raise AuthenticationError("Authentication did not complete before timeout")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def ensure_authenticated(
    page: Page,
    site: SiteSettings,
    username: str,
    password: str,
    *,
    timeout_ms: int,
) -> None:
    """Log *username* in unless the page already shows an authenticated session.

    Raises:
        AuthenticationError: The form could not be found, the console showed
            an error, or no stable authenticated state appeared in time.
    """
    login_url = urljoin(f"{site.base_url}/", site.login_path.lstrip("/"))
    await page.goto(login_url, wait_until="domcontentloaded", timeout=timeout_ms)

    if await _looks_authenticated(page, site):
        logger.info("Session already authenticated, skipping login")
        return

    username_control = await _first_visible_control(page, site.username_selectors, timeout_ms)
    password_control = await _first_visible_control(page, site.password_selectors, timeout_ms)
    submit_control = await _first_visible_control(page, site.submit_selectors, timeout_ms)
    if not (username_control and password_control and submit_control):
        raise AuthenticationError("Could not locate login form selectors. Override OPC_SITE__*_SELECTORS.")

    logger.info(
        "Logging in (username_selector=%s, password_selector=%s, submit_selector=%s)",
        username_control[0],
        password_control[0],
        submit_control[0],
    )
    await username_control[1].fill(username, timeout=timeout_ms)
    await password_control[1].fill(password, timeout=timeout_ms)
    await asyncio.sleep(site.login_submit_delay_ms / 1000)

    async def _submit() -> None:
        try:
            await submit_control[1].click(timeout=timeout_ms)
        except Exception:
            await password_control[1].press("Enter", timeout=timeout_ms)

    await asyncio.gather(_wait_for_authenticated_state(page, site, timeout_ms), _submit())

    if site.post_login_warmup_path and await _has_authenticated_shell(page):
        try:
            await page.goto(site.post_login_warmup_path, wait_until="domcontentloaded", timeout=timeout_ms)
        except Exception as exc:
            logger.debug("Post-login warmup navigation failed: %s", exc)
    logger.info("Login successful")


async def authenticate_with_retry(
    login: Callable[[], Awaitable[None]],
    *,
    max_attempts: int = 2,
    retry_delay_ms: int = 1_500,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Run *login*, retrying transient failures up to *max_attempts* times.

    A failure whose message matches :data:`NON_RETRYABLE_LOGIN_ERROR_RE`, or an
    ``AuthenticationError`` flagged ``retryable=False``, is raised at once.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            await login()
            return
        except Exception as exc:
            message = str(exc)
            non_retryable = is_non_retryable(message) or (
                isinstance(exc, AuthenticationError) and not exc.retryable
            )
            if non_retryable or attempt >= max_attempts:
                if isinstance(exc, AuthenticationError):
                    raise
                raise AuthenticationError(message, retryable=not non_retryable) from exc
            logger.warning(
                "Authentication attempt failed, retrying (attempt=%d/%d): %s", attempt, max_attempts, message
            )
            await sleep(retry_delay_ms / 1000)


async def persist_storage_state(context: Any, path: Path) -> str:
    """Write the context's cookies and local storage to *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    await context.storage_state(path=str(path))
    logger.info("Session persisted to %s", path)
    return str(path)
