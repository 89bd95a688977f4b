"""Operator console page driver.

``ConsoleDriver`` is the set of page operations the funds state machine
relies on. Each check method (``filter_settled``, ``operation_page_ready``,
``read_error_text`` ...) checks the page once and returns immediately;
waiting is the caller's job, via :func:`opconsole.browser.polling.poll_until`.

``PlaywrightConsoleDriver`` implements it against the console's DOM.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Protocol, runtime_checkable

from playwright.async_api import Locator, Page

from opconsole.browser.polling import poll_until
from opconsole.funds.money import normalize_text
from opconsole.models.funds import FundsOperation, RowCandidate

logger = logging.getLogger(__name__)

USERS_LISTING_PATH = "/users/all"

# ---------------------------------------------------------------------------
# Selectors and text patterns
# ---------------------------------------------------------------------------

USERS_FILTER_INPUT_SELECTOR = 'input[placeholder*="Jugador/Agente" i]'
USERS_FILTER_INPUT_FALLBACK = (
    'xpath=//*[contains(translate(normalize-space(.), "JUGADOR/AGENTE", "jugador/agente"), '
    '"jugador/agente")]/following::input[1]'
)
USERS_ROW_SELECTOR = ".users-table-item"
USERS_USERNAME_SELECTOR = (
    ".role-bar__user-block11, .ellipsis-text, .role-bar__user-block1, .users-table-item__user-info"
)
USERS_APPLY_FILTER_SELECTOR = (
    'button:has-text("Aceptar filtro"), button:has-text("Aplicar"), '
    'button:has-text("Filtrar"), button:has-text("Buscar")'
)
USER_ACTION_SELECTOR = 'div.users-table-item__button, a.button-desktop, a, button, [role="button"]'
USER_ACTION_CLICKABLE_SELECTOR = 'a.button-desktop, a, button, [role="button"]'
AMOUNT_INPUT_SELECTOR = (
    'input[name="amount"], input[type="number"], '
    'input[placeholder*="cantidad" i], input[aria-label*="cantidad" i]'
)
AMOUNT_INPUT_FALLBACK = (
    'xpath=//*[contains(translate(normalize-space(.), "CANTIDAD", "cantidad"), "cantidad")]/following::input[1]'
)
NO_RESULTS_SELECTOR = "text=/sin resultados|no se encontraron|sin coincidencias|ningun resultado|no records|no data/i"
WITHDRAW_SUBMIT_SELECTOR = '.withdrawal__buttons button[type="submit"]'
WITHDRAW_ALL_BUTTON_SELECTOR = '.withdrawal__all-button button[type="button"]'
WITHDRAW_LAYOUT_SELECTOR = ".withdrawal__inputs, form"

_DEPOSIT_TEXT = re.compile(r"dep[oó]sito", re.IGNORECASE)
_WITHDRAW_TEXT = re.compile(r"retiro", re.IGNORECASE)
_TOTAL_AMOUNT_TEXT = re.compile(r"\btoda\b", re.IGNORECASE)
_NON_ZERO_DIGIT = re.compile(r"[1-9]")
_TARGET_ID_HREF = re.compile(r"/users/(?:deposit|withdraw(?:al)?)/(\d+)(?:$|[/?#])", re.IGNORECASE)

ERROR_MESSAGE_RE = re.compile(
    r"saldo insuficiente|error|fall[oó]|fallid[oa]|invalido|invalid|no se pudo|incorrect[oa]|rechazad[oa]",
    re.IGNORECASE,
)
_SUCCESS_COMMON = r"transferencia realizada|correctamente|exito|success|completad[oa]"
DEPOSIT_SUCCESS_RE = re.compile(rf"depositad[oa]|acreditad[oa]|{_SUCCESS_COMMON}", re.IGNORECASE)
WITHDRAW_SUCCESS_RE = re.compile(rf"retirad[oa]|debitad[oa]|{_SUCCESS_COMMON}", re.IGNORECASE)


def operation_path(operation: FundsOperation) -> str:
    """Path prefix of the operation page for *operation*."""
    return "/users/deposit" if operation == FundsOperation.DEPOSIT else "/users/withdraw"


def direct_operation_path(operation: FundsOperation, target_id: str) -> str:
    if operation == FundsOperation.DEPOSIT:
        return f"/users/deposit/{target_id}"
    return f"/users/withdrawal/{target_id}"


def action_text(operation: FundsOperation) -> re.Pattern[str]:
    return _DEPOSIT_TEXT if operation == FundsOperation.DEPOSIT else _WITHDRAW_TEXT


def success_text(operation: FundsOperation) -> re.Pattern[str]:
    return DEPOSIT_SUCCESS_RE if operation == FundsOperation.DEPOSIT else WITHDRAW_SUCCESS_RE


def action_link_selector(operation: FundsOperation) -> str:
    if operation == FundsOperation.DEPOSIT:
        return 'a[href*="/users/deposit/"]'
    return 'a[href*="/users/withdrawal/"], a[href*="/users/withdraw/"]'


def extract_target_id(href: str | None) -> str | None:
    """Return the numeric player id from an operation link, if any.

    >>> extract_target_id("/users/withdrawal/4412?from=list")
    '4412'
    """
    if not href:
        return None
    match = _TARGET_ID_HREF.search(href)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Driver protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ConsoleDriver(Protocol):
    """Page operations needed to run a funds operation or a balance query.

    ``operation=None`` in row methods means "balance query": every visible
    row counts as actionable.
    """

    def current_url(self) -> str: ...

    async def open_users_listing(self, *, timeout_ms: int) -> None: ...

    async def fill_identity_filter(self, value: str, *, timeout_ms: int) -> None: ...

    async def apply_identity_filter(self, *, timeout_ms: int) -> None: ...

    async def filter_settled(self, operation: FundsOperation | None, target: str) -> bool: ...

    async def collect_row_candidates(self, operation: FundsOperation | None) -> list[RowCandidate]: ...

    async def read_row_text(self, index: int) -> str: ...

    async def read_row_target_id(self, index: int, operation: FundsOperation) -> str | None: ...

    async def find_row_by_target_id(self, target_id: str) -> int | None: ...

    async def open_operation_page(self, operation: FundsOperation, target_id: str, *, timeout_ms: int) -> None: ...

    async def click_row_action(self, index: int, operation: FundsOperation, *, timeout_ms: int, fast: bool) -> None: ...

    async def operation_page_ready(self, operation: FundsOperation) -> bool: ...

    async def target_visible(self, target: str) -> bool: ...

    async def fill_amount(self, amount: int, *, timeout_ms: int) -> None: ...

    async def click_full_amount(self, *, timeout_ms: int, interval_ms: int) -> None: ...

    async def click_submit(self, operation: FundsOperation, *, timeout_ms: int, interval_ms: int) -> None: ...

    async def read_error_text(self) -> str | None: ...

    async def read_success_text(self, operation: FundsOperation) -> str | None: ...


# ---------------------------------------------------------------------------
# Playwright implementation
# ---------------------------------------------------------------------------


async def _is_visible(locator: Locator) -> bool:
    try:
        return await locator.is_visible()
    except Exception:
        return False


async def _is_disabled(locator: Locator) -> bool:
    try:
        return await locator.is_disabled()
    except Exception:
        return False


async def _visible_members(locator: Locator) -> list[Locator]:
    visible = []
    for i in range(await locator.count()):
        candidate = locator.nth(i)
        if await _is_visible(candidate):
            visible.append(candidate)
    return visible


async def _click(locator: Locator, timeout_ms: int) -> None:
    """Click, retrying with ``force=True`` when the normal click is intercepted."""
    try:
        await locator.scroll_into_view_if_needed(timeout=timeout_ms)
    except Exception:
        logger.debug("scroll_into_view_if_needed failed; clicking anyway")
    try:
        await locator.click(timeout=timeout_ms)
    except Exception:
        await locator.click(timeout=timeout_ms, force=True)


class PlaywrightConsoleDriver:
    """``ConsoleDriver`` bound to a Playwright ``Page``.

    Args:
        page: The (possibly pooled) page to drive.
        interval_ms: Polling interval for the driver's internal element waits.
    """

    def __init__(self, page: Page, *, interval_ms: int = 100) -> None:
        self._page = page
        self._interval_ms = interval_ms
        self._filter_input: Locator | None = None

    # ------------------------------------------------------------------
    # Element lookup
    # ------------------------------------------------------------------

    async def _first_visible(self, locator: Locator, timeout_ms: int, *, enabled: bool = False) -> Locator | None:
        async def check() -> Locator | None:
            for candidate in await _visible_members(locator):
                if not enabled or not await _is_disabled(candidate):
                    return candidate
            return None

        return await poll_until(check, timeout_ms=timeout_ms, interval_ms=self._interval_ms)

    async def _require_visible(self, selector: str, timeout_ms: int, fallback: str | None = None) -> Locator:
        found = await self._first_visible(self._page.locator(selector), timeout_ms)
        if found is None and fallback:
            found = await self._first_visible(self._page.locator(fallback), timeout_ms)
        if found is None:
            raise LookupError(f"No visible element found for selector: {selector}")
        return found

    def _row(self, index: int) -> Locator:
        return self._page.locator(USERS_ROW_SELECTOR).nth(index)

    def _row_actions(self, scope: Any, operation: FundsOperation) -> Locator:
        return scope.locator(USER_ACTION_SELECTOR).filter(has_text=action_text(operation))

    # ------------------------------------------------------------------
    # Users listing
    # ------------------------------------------------------------------

    def current_url(self) -> str:
        return self._page.url

    async def open_users_listing(self, *, timeout_ms: int) -> None:
        await self._page.goto(USERS_LISTING_PATH, wait_until="domcontentloaded")
        self._filter_input = await self._require_visible(
            USERS_FILTER_INPUT_SELECTOR, timeout_ms, fallback=USERS_FILTER_INPUT_FALLBACK
        )

    async def fill_identity_filter(self, value: str, *, timeout_ms: int) -> None:
        if self._filter_input is None:
            self._filter_input = await self._require_visible(
                USERS_FILTER_INPUT_SELECTOR, timeout_ms, fallback=USERS_FILTER_INPUT_FALLBACK
            )
        await self._filter_input.fill("", timeout=timeout_ms)
        await self._filter_input.fill(value, timeout=timeout_ms)

    async def apply_identity_filter(self, *, timeout_ms: int) -> None:
        button = await self._first_visible(self._page.locator(USERS_APPLY_FILTER_SELECTOR), timeout_ms)
        if button is not None:
            await _click(button, timeout_ms)
            return
        if self._filter_input is not None:
            try:
                await self._filter_input.press("Enter", timeout=timeout_ms)
            except Exception as exc:
                logger.debug("Enter on filter input failed: %s", exc)

    async def filter_settled(self, operation: FundsOperation | None, target: str) -> bool:
        if operation is not None and await _visible_members(self._row_actions(self._page, operation)):
            return True
        pattern = re.compile(re.escape(target), re.IGNORECASE)
        if await _is_visible(self._page.get_by_text(pattern).first):
            return True
        return await _is_visible(self._page.locator(NO_RESULTS_SELECTOR).first)

    async def collect_row_candidates(self, operation: FundsOperation | None) -> list[RowCandidate]:
        rows = self._page.locator(USERS_ROW_SELECTOR)
        candidates: list[RowCandidate] = []
        for i in range(await rows.count()):
            row = rows.nth(i)
            if not await _is_visible(row):
                continue
            try:
                identities = [t.strip() for t in await row.locator(USERS_USERNAME_SELECTOR).all_inner_texts()]
            except Exception:
                identities = []
            try:
                row_text = await row.inner_text()
            except Exception:
                row_text = ""
            has_action = True
            if operation is not None:
                has_action = bool(await _visible_members(self._row_actions(row, operation)))
            candidates.append(
                RowCandidate(
                    index=i,
                    has_action=has_action,
                    identities=[t for t in identities if t],
                    row_text=normalize_text(row_text),
                )
            )
        return candidates

    async def read_row_text(self, index: int) -> str:
        return await self._row(index).inner_text()

    async def read_row_target_id(self, index: int, operation: FundsOperation) -> str | None:
        link = self._row(index).locator(action_link_selector(operation)).first
        try:
            target_id = extract_target_id(await link.get_attribute("href", timeout=1_000))
        except Exception:
            target_id = None
        if target_id:
            return target_id

        # Fall back to the whole table when the filter left a single player.
        ids = set()
        for link in await _visible_members(self._page.locator(action_link_selector(operation))):
            try:
                found = extract_target_id(await link.get_attribute("href"))
            except Exception:
                found = None
            if found:
                ids.add(found)
        return ids.pop() if len(ids) == 1 else None

    async def find_row_by_target_id(self, target_id: str) -> int | None:
        rows = self._page.locator(USERS_ROW_SELECTOR)
        link_selector = f'a[href*="/users/deposit/{target_id}"], a[href*="/users/withdraw/{target_id}"]'
        for i in range(await rows.count()):
            row = rows.nth(i)
            if await _is_visible(row) and await row.locator(link_selector).count() > 0:
                return i
        return None

    # ------------------------------------------------------------------
    # Operation page
    # ------------------------------------------------------------------

    async def open_operation_page(self, operation: FundsOperation, target_id: str, *, timeout_ms: int) -> None:
        await self._page.goto(
            direct_operation_path(operation, target_id), wait_until="domcontentloaded", timeout=timeout_ms
        )

    async def click_row_action(self, index: int, operation: FundsOperation, *, timeout_ms: int, fast: bool) -> None:
        row = self._row(index)
        text = action_text(operation)
        button = (
            await self._first_visible(row.locator(USER_ACTION_CLICKABLE_SELECTOR).filter(has_text=text), timeout_ms)
            or await self._first_visible(row.locator(action_link_selector(operation)), timeout_ms)
            or await self._first_visible(row.locator("div.users-table-item__button").filter(has_text=text), timeout_ms)
        )
        if button is None:
            visible = await _visible_members(self._page.locator(USER_ACTION_CLICKABLE_SELECTOR).filter(has_text=text))
            if len(visible) != 1:
                raise LookupError(f'Expected one visible "{operation.value}" action after filter, found {len(visible)}')
            button = visible[0]

        if not fast:
            await _click(button, timeout_ms)
            return
        try:
            await button.evaluate("el => el.click()")
        except Exception:
            await _click(button, min(timeout_ms, 1_200))

    async def operation_page_ready(self, operation: FundsOperation) -> bool:
        url = self._page.url
        path = operation_path(operation)
        if operation.is_withdrawal:
            layout = await _is_visible(self._page.locator(WITHDRAW_LAYOUT_SELECTOR).first)
            if path in url and layout:
                return True
        if path in url:
            return True
        return await _is_visible(self._page.get_by_role("heading", name=action_text(operation)).first)

    async def target_visible(self, target: str) -> bool:
        pattern = re.compile(re.escape(target), re.IGNORECASE)
        return await _is_visible(self._page.get_by_text(pattern).first)

    async def _amount_input(self, timeout_ms: int) -> Locator:
        return await self._require_visible(AMOUNT_INPUT_SELECTOR, timeout_ms, fallback=AMOUNT_INPUT_FALLBACK)

    async def fill_amount(self, amount: int, *, timeout_ms: int) -> None:
        field = await self._amount_input(timeout_ms)
        await field.fill("", timeout=timeout_ms)
        await field.fill(str(amount), timeout=timeout_ms)
        try:
            await field.press("Tab", timeout=min(timeout_ms, 2_000))
        except Exception as exc:
            logger.debug("Tab after amount failed: %s", exc)

    async def click_full_amount(self, *, timeout_ms: int, interval_ms: int) -> None:
        button = await self._first_visible(
            self._page.locator(WITHDRAW_ALL_BUTTON_SELECTOR), min(timeout_ms, 2_000), enabled=True
        ) or await self._first_visible(
            self._page.locator(USER_ACTION_CLICKABLE_SELECTOR).filter(has_text=_TOTAL_AMOUNT_TEXT),
            timeout_ms,
            enabled=True,
        )
        if button is None:
            raise LookupError('Could not find enabled "Toda" button for total withdraw')
        await _click(button, timeout_ms)

        try:
            field = await self._amount_input(min(timeout_ms, 2_000))
        except LookupError:
            return
        value = (await field.input_value()).strip()
        if not _NON_ZERO_DIGIT.search(value):
            raise ValueError('Total withdraw did not populate a non-zero amount after clicking "Toda"')

    async def _submit_button(self, operation: FundsOperation, timeout_ms: int) -> Locator | None:
        if operation.is_withdrawal:
            structured = self._page.locator(WITHDRAW_SUBMIT_SELECTOR).filter(has_text=_WITHDRAW_TEXT)
            found = await self._first_visible(structured, min(timeout_ms, 2_000), enabled=True)
            if found is not None:
                return found

        candidates = self._page.locator(USER_ACTION_CLICKABLE_SELECTOR).filter(has_text=action_text(operation))

        async def check() -> Locator | None:
            ranked: list[tuple[float, Locator]] = []
            for candidate in await _visible_members(candidates):
                if await _is_disabled(candidate):
                    continue
                box = await candidate.bounding_box()
                tag = await candidate.evaluate("el => el.tagName.toLowerCase()")
                score = (box["y"] if box else 0) + (10_000 if tag == "button" else 0)
                ranked.append((score, candidate))
            if not ranked:
                return None
            ranked.sort(key=lambda item: item[0], reverse=True)
            return ranked[0][1]

        return await poll_until(check, timeout_ms=timeout_ms, interval_ms=self._interval_ms)

    async def click_submit(self, operation: FundsOperation, *, timeout_ms: int, interval_ms: int) -> None:
        self._interval_ms = interval_ms
        button = await self._submit_button(operation, timeout_ms)
        if button is None:
            raise LookupError(f'No enabled visible submit action found for operation "{operation.value}"')
        await _click(button, timeout_ms)

    async def _visible_text(self, pattern: re.Pattern[str]) -> str | None:
        locator = self._page.locator("body").get_by_text(pattern).first
        if not await _is_visible(locator):
            return None
        try:
            return (await locator.inner_text()).strip()
        except Exception:
            return ""

    async def read_error_text(self) -> str | None:
        return await self._visible_text(ERROR_MESSAGE_RE)

    async def read_success_text(self, operation: FundsOperation) -> str | None:
        return await self._visible_text(success_text(operation))
