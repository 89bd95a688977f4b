"""Transaction state machine for deposits, withdrawals and balance queries.

A funds operation is a fixed sequence of named steps::

    00-login → 01-goto-users-all → 02-fill-user-filter → 03-apply-user-filter
    → 04-open-user-<op> → 05-wait-<op>-page → 06-fill-amount | 06-click-total-amount
    → 07-click-<op>-submit → 08-verify-<op>-result → 99-final

Each step appends a ``StepResult``; the first failed step raises
``StepError`` and the remaining steps never run.

Verification distinguishes *error* (the console said no), *success* (the
console said yes, or navigated away) and *unknown* (silence). Only unknown
triggers the fallback: one re-submit while still on the operation page,
then a balance reconciliation against the balance captured before the
operation. A money movement is never reported as successful without
either explicit confirmation or a matching balance.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from opconsole.browser.artifacts import ArtifactRecorder
from opconsole.browser.console import ConsoleDriver, operation_path
from opconsole.browser.polling import Clock, Sleep, poll_until
from opconsole.exceptions import (
    AmbiguityError,
    MoneyParseError,
    ReconciliationInconclusiveError,
    RowNotFoundError,
    StepError,
)
from opconsole.funds.money import (
    DEFAULT_TOLERANCE,
    balances_match,
    extract_balance_text,
    extract_row_balance,
    parse_localized_money,
)
from opconsole.funds.rows import select_row_index
from opconsole.models.funds import (
    BalanceResult,
    FundsOperation,
    FundsOutcomeSnapshot,
    RowCandidate,
    VerifyOutcome,
    VerifyState,
)
from opconsole.models.job import BalancePayload, ExecutionOptions, FundsPayload
from opconsole.models.steps import StepResult, StepStatus, utcnow

logger = logging.getLogger(__name__)

Authenticator = Callable[[], Awaitable[None]]


# ---------------------------------------------------------------------------
# Timings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FundsTimings:
    """Poll interval and per-phase timeouts, all in milliseconds."""

    interval_ms: int
    step_ms: int
    filter_input_ms: int
    apply_button_ms: int
    filter_outcome_ms: int
    row_search_ms: int
    row_action_ms: int
    page_ms: int
    verify_ms: int
    resubmit_ms: int
    reconcile_ms: int
    fast: bool = False

    @classmethod
    def for_options(cls, options: ExecutionOptions) -> "FundsTimings":
        """Derive timings from the job's execution profile.

        The fast profile polls every 100 ms and caps each phase at a few
        seconds; slower profiles poll every 250 ms and use the full timeout.
        """
        t = options.timeout_ms
        if options.fast_profile:
            return cls(
                interval_ms=100,
                step_ms=t,
                filter_input_ms=min(t, 4_000),
                apply_button_ms=min(t, 2_000),
                filter_outcome_ms=min(t, 4_000),
                row_search_ms=min(t, 5_000),
                row_action_ms=3_000,
                page_ms=min(t, 5_000),
                verify_ms=min(t, 5_000),
                resubmit_ms=min(t, 5_000),
                reconcile_ms=10_000,
                fast=True,
            )
        return cls(
            interval_ms=250,
            step_ms=t,
            filter_input_ms=min(t, 10_000),
            apply_button_ms=t,
            filter_outcome_ms=min(t, 10_000),
            row_search_ms=t,
            row_action_ms=max(t, 3_000),
            page_ms=t,
            verify_ms=t,
            resubmit_ms=min(t, 5_000),
            reconcile_ms=max(t, 10_000),
        )


@dataclass(frozen=True)
class StepNames:
    open_action: str
    wait_page: str
    amount: str
    submit: str
    verify: str

    @classmethod
    def for_operation(cls, operation: FundsOperation) -> "StepNames":
        noun = "deposit" if operation == FundsOperation.DEPOSIT else "withdraw"
        amount = "06-click-total-amount" if operation == FundsOperation.WITHDRAWAL_FULL else "06-fill-amount"
        return cls(
            open_action=f"04-open-user-{noun}",
            wait_page=f"05-wait-{noun}-page",
            amount=amount,
            submit=f"07-click-{noun}-submit",
            verify=f"08-verify-{noun}-result",
        )


def expected_balance(operation: FundsOperation, amount: int | None, before: float | None) -> float | None:
    """Balance the target should show after *operation*, or ``None`` if unknowable."""
    if operation == FundsOperation.WITHDRAWAL_FULL:
        return 0.0
    if before is None or amount is None:
        return None
    if operation == FundsOperation.DEPOSIT:
        return before + amount
    return before - amount


# ---------------------------------------------------------------------------
# Step runner
# ---------------------------------------------------------------------------


class ConsoleFlow:
    """Shared step bookkeeping and users-listing navigation.

    Args:
        driver: Page operations for the operator console.
        target_user: Player the flow acts on.
        timings: Poll interval and phase timeouts.
        authenticator: Coroutine factory performing the agent login.
        recorder: Optional artifact recorder for per-step screenshots.
    """

    def __init__(
        self,
        driver: ConsoleDriver,
        target_user: str,
        *,
        timings: FundsTimings,
        authenticator: Authenticator,
        recorder: ArtifactRecorder | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.driver = driver
        self.target_user = target_user
        self.timings = timings
        self._authenticator = authenticator
        self._recorder = recorder
        self._clock = clock
        self._sleep = sleep
        self.steps: list[StepResult] = []
        self.artifacts: list[str] = []

    async def _poll(self, check, timeout_ms: int):
        return await poll_until(
            check,
            timeout_ms=timeout_ms,
            interval_ms=self.timings.interval_ms,
            clock=self._clock,
            sleep=self._sleep,
        )

    async def _capture(self, name: str) -> str | None:
        if self._recorder is None or not self._recorder.capture_success:
            return None
        ref = await self._recorder.capture(name)
        if ref:
            self.artifacts.append(ref)
        return ref

    def _record(self, step: StepResult) -> StepResult:
        """Append *step*; raise ``StepError`` if it failed."""
        self.steps.append(step)
        if step.status == StepStatus.FAILED:
            logger.warning("Step %s failed: %s", step.name, step.error)
            raise StepError(step)
        logger.debug("Step %s ok", step.name)
        return step

    async def run_step(self, name: str, action: Callable[[], Awaitable[object]]) -> StepResult:
        """Run *action* as the step *name* and record its outcome.

        Raises:
            StepError: If *action* raised; the failed step is already recorded.
        """
        started = utcnow()
        try:
            await action()
        except Exception as exc:
            step = StepResult(
                name=name,
                status=StepStatus.FAILED,
                started_at=started,
                error=str(exc) or exc.__class__.__name__,
            )
            self.steps.append(step)
            logger.warning("Step %s failed: %s", name, step.error)
            raise StepError(step) from exc
        artifact = await self._capture(name)
        return self._record(StepResult(name=name, status=StepStatus.OK, started_at=started, artifact_ref=artifact))

    async def finish(self) -> StepResult:
        started = utcnow()
        artifact = await self._capture("99-final")
        return self._record(StepResult(name="99-final", status=StepStatus.OK, started_at=started, artifact_ref=artifact))

    # ------------------------------------------------------------------
    # Users listing
    # ------------------------------------------------------------------

    async def _open_listing(self) -> None:
        await self.driver.open_users_listing(timeout_ms=self.timings.filter_input_ms)

    async def _fill_filter(self) -> None:
        await self.driver.fill_identity_filter(self.target_user.strip().lower(), timeout_ms=self.timings.step_ms)

    async def _apply_filter(self, operation: FundsOperation | None, *, wait_outcome: bool, timeout_ms: int) -> None:
        await self.driver.apply_identity_filter(timeout_ms=self.timings.apply_button_ms)
        if not wait_outcome:
            return

        async def settled() -> bool:
            return await self.driver.filter_settled(operation, self.target_user)

        if not await self._poll(settled, timeout_ms):
            raise TimeoutError("Users table did not refresh after applying filter")

    async def locate_row(self, operation: FundsOperation | None, timeout_ms: int) -> RowCandidate:
        """Poll the listing until the disambiguator picks exactly one row.

        Raises:
            AmbiguityError: The last disambiguation error seen before the timeout.
        """
        last_error: AmbiguityError = RowNotFoundError(
            f'Could not find an actionable row for user "{self.target_user}"',
            target=self.target_user,
            matches=0,
        )

        async def check() -> RowCandidate | None:
            nonlocal last_error
            candidates = await self.driver.collect_row_candidates(operation)
            try:
                index = select_row_index(candidates, self.target_user)
            except AmbiguityError as exc:
                last_error = exc
                return None
            return next(c for c in candidates if c.index == index)

        row = await self._poll(check, timeout_ms)
        if row is None:
            raise last_error
        return row

    async def authenticate(self) -> StepResult:
        return await self.run_step("00-login", self._authenticator)


# ---------------------------------------------------------------------------
# Funds transaction
# ---------------------------------------------------------------------------


class FundsTransaction(ConsoleFlow):
    """Drive one deposit or withdrawal through the operator console.

    Args:
        driver: Page operations for the operator console.
        request: The funds payload (operation, target player, amount).
        timings: Poll interval and phase timeouts.
        authenticator: Coroutine factory performing the agent login.
        recorder: Optional artifact recorder for per-step screenshots.
        tolerance: Absolute tolerance for balance reconciliation.
    """

    def __init__(
        self,
        driver: ConsoleDriver,
        request: FundsPayload,
        *,
        timings: FundsTimings,
        authenticator: Authenticator,
        recorder: ArtifactRecorder | None = None,
        tolerance: float = DEFAULT_TOLERANCE,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(
            driver,
            request.target_user,
            timings=timings,
            authenticator=authenticator,
            recorder=recorder,
            clock=clock,
            sleep=sleep,
        )
        self.request = request
        self.operation = request.operation
        self.names = StepNames.for_operation(request.operation)
        self.tolerance = tolerance
        self.snapshot = FundsOutcomeSnapshot()

    async def run(self) -> list[StepResult]:
        """Execute every step in order and return the step history.

        Raises:
            StepError: The first failed step.
        """
        op = self.operation
        t = self.timings
        logger.info("Funds operation starting (operation=%s, target=%s)", op.value, self.target_user)

        await self.authenticate()
        await self.run_step("01-goto-users-all", self._open_listing)
        await self.run_step("02-fill-user-filter", self._fill_filter)
        await self.run_step(
            "03-apply-user-filter",
            lambda: self._apply_filter(op, wait_outcome=True, timeout_ms=t.filter_outcome_ms),
        )
        await self.run_step(self.names.open_action, self._open_operation)
        await self.run_step(self.names.wait_page, self._wait_operation_page)
        await self.run_step(self.names.amount, self._set_amount)

        submitted_url = self.driver.current_url()
        await self.run_step(
            self.names.submit,
            lambda: self.driver.click_submit(op, timeout_ms=t.step_ms, interval_ms=t.interval_ms),
        )
        await self.verify_with_fallback(submitted_url)
        await self.finish()
        logger.info("Funds operation confirmed (operation=%s, target=%s)", op.value, self.target_user)
        return self.steps

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _open_operation(self) -> None:
        op = self.operation
        row = await self.locate_row(op, self.timings.row_search_ms)
        row_text = await self.driver.read_row_text(row.index)
        try:
            self.snapshot.balance_before = extract_row_balance(row_text)
        except MoneyParseError:
            logger.debug("No balance visible in row for %s; reconciliation disabled", self.target_user)

        target_id = await self.driver.read_row_target_id(row.index, op)
        self.snapshot.resolved_target_id = target_id
        if target_id:
            await self.driver.open_operation_page(op, target_id, timeout_ms=self.timings.step_ms)
            return
        await self.driver.click_row_action(
            row.index, op, timeout_ms=self.timings.row_action_ms, fast=self.timings.fast
        )

    async def _wait_operation_page(self) -> None:
        op = self.operation

        async def ready() -> bool:
            return await self.driver.operation_page_ready(op)

        async def target_shown() -> bool:
            return await self.driver.target_visible(self.target_user)

        if not await self._poll(ready, self.timings.page_ms):
            raise TimeoutError(f'Operation page did not open for "{op.value}" within timeout')
        if not await self._poll(target_shown, self.timings.page_ms):
            raise LookupError(f'User "{self.target_user}" is not visible in {op.value} target panel')

    async def _set_amount(self) -> None:
        if self.operation == FundsOperation.WITHDRAWAL_FULL:
            await self.driver.click_full_amount(timeout_ms=self.timings.step_ms, interval_ms=self.timings.interval_ms)
            return
        if self.request.amount is None:
            raise ValueError(f'amount is required for "{self.operation.value}" operation')
        await self.driver.fill_amount(self.request.amount, timeout_ms=self.timings.step_ms)

    # ------------------------------------------------------------------
    # Verification and fallback
    # ------------------------------------------------------------------

    def _on_operation_page(self) -> bool:
        return operation_path(self.operation) in self.driver.current_url()

    async def verify_outcome(self, submitted_url: str) -> VerifyOutcome:
        """Poll the page for an error, a success message or a navigation away."""
        op = self.operation
        target_path = operation_path(op)

        async def check() -> VerifyOutcome | None:
            error = await self.driver.read_error_text()
            if error is not None:
                return VerifyOutcome(
                    state=VerifyState.ERROR, reason=error or f"Error message detected after {op.value} submit"
                )
            success = await self.driver.read_success_text(op)
            if success is not None:
                return VerifyOutcome(
                    state=VerifyState.SUCCESS, reason=success or f"Success message detected after {op.value} submit"
                )
            url = self.driver.current_url()
            if url != submitted_url and target_path not in url:
                return VerifyOutcome(state=VerifyState.SUCCESS, reason=f"URL changed after submit: {url}")
            return None

        outcome = await self._poll(check, self.timings.verify_ms)
        if outcome is None:
            return VerifyOutcome(
                state=VerifyState.UNKNOWN, reason=f"No clear success signal detected after {op.value} submit"
            )
        return outcome

    async def verify_with_fallback(self, submitted_url: str) -> StepResult:
        """Run the verify step, falling back to re-submit then reconciliation on silence."""
        name = self.names.verify
        started = utcnow()
        outcome = await self.verify_outcome(submitted_url)

        if outcome.state == VerifyState.UNKNOWN and self._on_operation_page():
            try:
                await self.driver.click_submit(
                    self.operation, timeout_ms=self.timings.resubmit_ms, interval_ms=self.timings.interval_ms
                )
            except Exception as exc:
                logger.info("Re-submit not possible, going to reconciliation: %s", exc)
            else:
                logger.info("No outcome signal after submit; re-submitted once")
                outcome = await self.verify_outcome(self.driver.current_url())

        if outcome.state == VerifyState.UNKNOWN:
            try:
                observed = await self.reconcile(outcome.reason)
            except ReconciliationInconclusiveError as exc:
                logger.warning(
                    "Reconciliation inconclusive (expected=%s, observed=%s)",
                    exc.expected_balance,
                    exc.observed_balance,
                )
            else:
                logger.info("Operation confirmed by balance reconciliation (balance=%.2f)", observed)
                outcome = VerifyOutcome(state=VerifyState.SUCCESS, reason="Balance matches expected value")

        artifact = await self._capture(name)
        if outcome.state == VerifyState.SUCCESS:
            return self._record(StepResult(name=name, status=StepStatus.OK, started_at=started, artifact_ref=artifact))
        return self._record(
            StepResult(
                name=name,
                status=StepStatus.FAILED,
                started_at=started,
                artifact_ref=artifact,
                error=outcome.reason,
            )
        )

    async def reconcile(self, reason: str) -> float:
        """Compare the live balance with the expected one.

        Returns:
            The observed balance when it matches within tolerance.

        Raises:
            ReconciliationInconclusiveError: Carrying *reason*, when the
                expected balance is unknown, the balance cannot be re-read,
                or it does not match.
        """
        expected = expected_balance(self.operation, self.request.amount, self.snapshot.balance_before)
        if expected is None:
            raise ReconciliationInconclusiveError(reason)
        try:
            observed = await self.reread_balance()
        except Exception as exc:
            logger.warning("Could not re-read balance for reconciliation: %s", exc)
            raise ReconciliationInconclusiveError(reason, expected_balance=expected) from exc
        if not balances_match(observed, expected, self.tolerance):
            raise ReconciliationInconclusiveError(reason, expected_balance=expected, observed_balance=observed)
        return observed

    async def reread_balance(self) -> float:
        """Return to the users listing and read the target's current balance."""
        timeout = self.timings.reconcile_ms
        await self.driver.open_users_listing(timeout_ms=min(timeout, 10_000))
        await self.driver.fill_identity_filter(self.target_user.strip().lower(), timeout_ms=timeout)
        await self._apply_filter(self.operation, wait_outcome=True, timeout_ms=min(timeout, 8_000))

        index: int | None = None
        target_id = self.snapshot.resolved_target_id
        if target_id:

            async def by_id() -> int | None:
                return await self.driver.find_row_by_target_id(target_id)

            index = await self._poll(by_id, min(timeout, 5_000))
        if index is None:
            index = (await self.locate_row(self.operation, min(timeout, 8_000))).index
        return extract_row_balance(await self.driver.read_row_text(index))


# ---------------------------------------------------------------------------
# Balance query
# ---------------------------------------------------------------------------


class BalanceQuery(ConsoleFlow):
    """Read a player's balance from the users listing.

    Steps: ``00-login``, ``01-goto-users-all``, ``02-fill-user-filter``,
    ``03-apply-user-filter``, ``04-find-user-row``, ``05-read-balance``,
    ``99-final``.
    """

    def __init__(
        self,
        driver: ConsoleDriver,
        request: BalancePayload,
        *,
        timings: FundsTimings,
        authenticator: Authenticator,
        recorder: ArtifactRecorder | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(
            driver,
            request.target_user,
            timings=timings,
            authenticator=authenticator,
            recorder=recorder,
            clock=clock,
            sleep=sleep,
        )
        self.result: BalanceResult | None = None
        self._row: RowCandidate | None = None

    async def run(self) -> BalanceResult:
        await self.authenticate()
        await self.run_step("01-goto-users-all", self._open_listing)
        await self.run_step("02-fill-user-filter", self._fill_filter)
        await self.run_step(
            "03-apply-user-filter",
            lambda: self._apply_filter(None, wait_outcome=False, timeout_ms=self.timings.filter_outcome_ms),
        )
        await self.run_step("04-find-user-row", self._find_row)
        await self.run_step("05-read-balance", self._read_balance)
        await self.finish()
        if self.result is None:
            raise LookupError("Balance result was not captured")
        return self.result

    async def _find_row(self) -> None:
        self._row = await self.locate_row(None, self.timings.row_search_ms)

    async def _read_balance(self) -> None:
        if self._row is None:
            raise LookupError("Target user row was not resolved")
        balance_text = extract_balance_text(await self.driver.read_row_text(self._row.index))
        self.result = BalanceResult(
            target_user=self.target_user,
            balance_text=balance_text,
            balance=parse_localized_money(balance_text),
        )
