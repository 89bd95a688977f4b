"""Unit tests for the funds transaction state machine and balance query."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from opconsole.browser.console import ConsoleDriver
from opconsole.exceptions import AuthenticationError, StepError
from opconsole.funds.machine import BalanceQuery, FundsTimings, FundsTransaction, StepNames, expected_balance
from opconsole.models.funds import FundsOperation, RowCandidate
from opconsole.models.job import BalancePayload, ExecutionOptions, FundsPayload
from opconsole.models.steps import StepStatus

BASE = "https://console.test"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeConsole:
    """Scriptable ``ConsoleDriver`` holding the users listing in memory.

    Args:
        rows: ``(identity, row_text, target_id)`` per listing row.
        on_submit: ``"success"``, ``"error"``, ``"navigate"`` or ``"silent"``, or a
            list of those applied to successive submits (the last one repeats).
        rows_after_submit: Row texts shown once a submit has happened.
    """

    def __init__(self, rows, *, on_submit: str | list[str] = "success", rows_after_submit=None) -> None:
        self.rows = rows
        self.on_submit = on_submit
        self.rows_after_submit = rows_after_submit
        self.url = f"{BASE}/"
        self.filter_values: list[str] = []
        self.listing_opens = 0
        self.submits = 0
        self.amounts: list[int] = []
        self.full_amount_clicks = 0
        self.error_text: str | None = None
        self.success_text: str | None = None

    def current_url(self) -> str:
        return self.url

    async def open_users_listing(self, *, timeout_ms: int) -> None:
        self.listing_opens += 1
        self.url = f"{BASE}/users/all"

    async def fill_identity_filter(self, value: str, *, timeout_ms: int) -> None:
        self.filter_values.append(value)

    async def apply_identity_filter(self, *, timeout_ms: int) -> None:
        return None

    async def filter_settled(self, operation, target: str) -> bool:
        return True

    async def collect_row_candidates(self, operation) -> list[RowCandidate]:
        return [
            RowCandidate(index=i, has_action=True, identities=[identity], row_text=text)
            for i, (identity, text, _) in enumerate(self.rows)
        ]

    async def read_row_text(self, index: int) -> str:
        if self.submits and self.rows_after_submit is not None:
            return self.rows_after_submit[index]
        return self.rows[index][1]

    async def read_row_target_id(self, index: int, operation) -> str | None:
        return self.rows[index][2]

    async def find_row_by_target_id(self, target_id: str) -> int | None:
        for i, (_, _, row_id) in enumerate(self.rows):
            if row_id == target_id:
                return i
        return None

    async def open_operation_page(self, operation, target_id: str, *, timeout_ms: int) -> None:
        segment = "deposit" if operation == FundsOperation.DEPOSIT else "withdrawal"
        self.url = f"{BASE}/users/{segment}/{target_id}"

    async def click_row_action(self, index: int, operation, *, timeout_ms: int, fast: bool) -> None:
        segment = "deposit" if operation == FundsOperation.DEPOSIT else "withdraw"
        self.url = f"{BASE}/users/{segment}"

    async def operation_page_ready(self, operation) -> bool:
        return True

    async def target_visible(self, target: str) -> bool:
        return True

    async def fill_amount(self, amount: int, *, timeout_ms: int) -> None:
        self.amounts.append(amount)

    async def click_full_amount(self, *, timeout_ms: int, interval_ms: int) -> None:
        self.full_amount_clicks += 1

    async def click_submit(self, operation, *, timeout_ms: int, interval_ms: int) -> None:
        self.submits += 1
        script = [self.on_submit] if isinstance(self.on_submit, str) else self.on_submit
        mode = script[min(self.submits, len(script)) - 1]
        if mode == "success":
            self.success_text = "Depósito realizado correctamente"
        elif mode == "error":
            self.error_text = "Saldo insuficiente"
        elif mode == "navigate":
            self.url = f"{BASE}/users/all"

    async def read_error_text(self) -> str | None:
        return self.error_text

    async def read_success_text(self, operation) -> str | None:
        return self.success_text


ROWS = [
    ("other_user", "other_user Jugador 20,00", "11"),
    ("pruebita", "pruebita Jugador 1.500,00", "77"),
]

TIMINGS = FundsTimings.for_options(ExecutionOptions(timeout_ms=1_000))


def _transaction(console: FakeConsole, operation: FundsOperation, amount: int | None = None, authenticator=None):
    clock = FakeClock()
    payload = FundsPayload(
        operation=operation,
        target_user="Pruebita ",
        agent="agent01",
        agent_password="secret",
        amount=amount,
    )
    return FundsTransaction(
        console,
        payload,
        timings=TIMINGS,
        authenticator=authenticator or AsyncMock(),
        clock=clock,
        sleep=clock.sleep,
    )


class TestHelpers:
    def test_fake_console_is_a_driver(self) -> None:
        assert isinstance(FakeConsole(ROWS), ConsoleDriver)

    def test_expected_balance(self) -> None:
        assert expected_balance(FundsOperation.DEPOSIT, 100, 50.0) == 150.0
        assert expected_balance(FundsOperation.WITHDRAWAL, 100, 150.0) == 50.0
        assert expected_balance(FundsOperation.WITHDRAWAL_FULL, None, None) == 0.0
        assert expected_balance(FundsOperation.DEPOSIT, 100, None) is None

    def test_step_names(self) -> None:
        names = StepNames.for_operation(FundsOperation.WITHDRAWAL_FULL)
        assert names.open_action == "04-open-user-withdraw"
        assert names.amount == "06-click-total-amount"
        assert names.verify == "08-verify-withdraw-result"

    def test_fast_timings(self) -> None:
        assert TIMINGS.fast is True
        assert TIMINGS.interval_ms == 100
        assert TIMINGS.verify_ms == 1_000

    def test_slow_timings(self) -> None:
        slow = FundsTimings.for_options(ExecutionOptions(timeout_ms=20_000, action_delay_ms=50))
        assert slow.fast is False
        assert slow.interval_ms == 250
        assert slow.filter_outcome_ms == 10_000
        assert slow.reconcile_ms == 20_000


class TestFundsTransaction:
    @pytest.mark.anyio
    async def test_deposit_confirmed_by_message(self) -> None:
        console = FakeConsole(ROWS)
        transaction = _transaction(console, FundsOperation.DEPOSIT, 100)

        steps = await transaction.run()

        assert [s.name for s in steps] == [
            "00-login",
            "01-goto-users-all",
            "02-fill-user-filter",
            "03-apply-user-filter",
            "04-open-user-deposit",
            "05-wait-deposit-page",
            "06-fill-amount",
            "07-click-deposit-submit",
            "08-verify-deposit-result",
            "99-final",
        ]
        assert all(s.status == StepStatus.OK for s in steps)
        assert console.filter_values == ["pruebita"]
        assert console.amounts == [100]
        assert console.submits == 1
        assert transaction.snapshot.balance_before == 1500.0
        assert transaction.snapshot.resolved_target_id == "77"

    @pytest.mark.anyio
    async def test_navigation_counts_as_success(self) -> None:
        console = FakeConsole(ROWS, on_submit="navigate")
        steps = await _transaction(console, FundsOperation.WITHDRAWAL, 200).run()
        assert steps[-2].name == "08-verify-withdraw-result"
        assert steps[-2].status == StepStatus.OK

    @pytest.mark.anyio
    async def test_error_message_fails_without_fallback(self) -> None:
        console = FakeConsole(ROWS, on_submit="error")
        transaction = _transaction(console, FundsOperation.WITHDRAWAL, 5_000)

        with pytest.raises(StepError, match="Saldo insuficiente") as exc_info:
            await transaction.run()

        assert exc_info.value.step.name == "08-verify-withdraw-result"
        assert transaction.steps[-1].status == StepStatus.FAILED
        assert console.submits == 1
        assert console.listing_opens == 1

    @pytest.mark.anyio
    async def test_silence_resolved_by_matching_balance(self) -> None:
        console = FakeConsole(
            ROWS,
            on_submit="silent",
            rows_after_submit=["other_user Jugador 20,00", "pruebita Jugador 1.000,00"],
        )
        transaction = _transaction(console, FundsOperation.WITHDRAWAL, 500)

        steps = await transaction.run()

        assert steps[-2].name == "08-verify-withdraw-result"
        assert steps[-2].status == StepStatus.OK
        assert console.submits == 2
        assert console.listing_opens == 2

    @pytest.mark.anyio
    async def test_resubmit_success_skips_reconciliation(self) -> None:
        console = FakeConsole(ROWS, on_submit=["silent", "success"])
        transaction = _transaction(console, FundsOperation.DEPOSIT, 100)

        steps = await transaction.run()

        assert steps[-2].name == "08-verify-deposit-result"
        assert steps[-2].status == StepStatus.OK
        assert steps[-1].name == "99-final"
        assert console.submits == 2
        assert console.listing_opens == 1

    @pytest.mark.anyio
    async def test_resubmit_error_fails_without_reconciliation(self) -> None:
        console = FakeConsole(ROWS, on_submit=["silent", "error"])
        transaction = _transaction(console, FundsOperation.WITHDRAWAL, 5_000)

        with pytest.raises(StepError, match="Saldo insuficiente") as exc_info:
            await transaction.run()

        assert exc_info.value.step.name == "08-verify-withdraw-result"
        assert exc_info.value.step.error == "Saldo insuficiente"
        assert console.submits == 2
        assert console.listing_opens == 1

    @pytest.mark.anyio
    async def test_silence_with_mismatched_balance_fails(self) -> None:
        console = FakeConsole(
            ROWS,
            on_submit="silent",
            rows_after_submit=["other_user Jugador 20,00", "pruebita Jugador 1.500,00"],
        )
        transaction = _transaction(console, FundsOperation.WITHDRAWAL, 500)

        with pytest.raises(StepError) as exc_info:
            await transaction.run()

        failed = exc_info.value.step
        assert failed.name == "08-verify-withdraw-result"
        assert failed.error == "No clear success signal detected after withdrawal submit"
        assert "99-final" not in [s.name for s in transaction.steps]

    @pytest.mark.anyio
    async def test_full_withdrawal_reconciles_to_zero(self) -> None:
        rows = [("pruebita", "pruebita Jugador activo", "77")]
        console = FakeConsole(rows, on_submit="silent", rows_after_submit=["pruebita Jugador 0,00"])
        transaction = _transaction(console, FundsOperation.WITHDRAWAL_FULL)

        steps = await transaction.run()

        assert transaction.snapshot.balance_before is None
        assert console.full_amount_clicks == 1
        assert console.amounts == []
        assert "06-click-total-amount" in [s.name for s in steps]
        assert steps[-1].name == "99-final"

    @pytest.mark.anyio
    async def test_row_action_used_without_target_id(self) -> None:
        rows = [("pruebita", "pruebita Jugador 10,00", None)]
        console = FakeConsole(rows)
        transaction = _transaction(console, FundsOperation.DEPOSIT, 5)
        await transaction.run()
        assert transaction.snapshot.resolved_target_id is None

    @pytest.mark.anyio
    async def test_ambiguous_rows_abort(self) -> None:
        rows = [("pruebita", "pruebita 10,00", "1"), ("PRUEBITA", "PRUEBITA 20,00", "2")]
        console = FakeConsole(rows)
        transaction = _transaction(console, FundsOperation.DEPOSIT, 10)

        with pytest.raises(StepError, match="Multiple exact matches"):
            await transaction.run()

        assert transaction.steps[-1].name == "04-open-user-deposit"
        assert console.submits == 0

    @pytest.mark.anyio
    async def test_substring_row_is_not_selected(self) -> None:
        rows = [("pruebita_2", "pruebita_2 Jugador 10,00", "5")]
        transaction = _transaction(FakeConsole(rows), FundsOperation.DEPOSIT, 10)
        with pytest.raises(StepError, match="exact unique match"):
            await transaction.run()

    @pytest.mark.anyio
    async def test_login_failure_stops_sequence(self) -> None:
        console = FakeConsole(ROWS)
        authenticator = AsyncMock(side_effect=AuthenticationError("usuario no autorizado", retryable=False))
        transaction = _transaction(console, FundsOperation.DEPOSIT, 10, authenticator=authenticator)

        with pytest.raises(StepError, match="00-login"):
            await transaction.run()

        assert [s.name for s in transaction.steps] == ["00-login"]
        assert transaction.steps[0].error == "usuario no autorizado"
        assert console.listing_opens == 0


class TestBalanceQuery:
    @pytest.mark.anyio
    async def test_reads_balance(self) -> None:
        clock = FakeClock()
        query = BalanceQuery(
            FakeConsole(ROWS),
            BalancePayload(target_user="pruebita", agent="agent01", agent_password="secret"),
            timings=TIMINGS,
            authenticator=AsyncMock(),
            clock=clock,
            sleep=clock.sleep,
        )

        result = await query.run()

        assert result.balance_text == "1.500,00"
        assert result.balance == 1500.0
        assert [s.name for s in query.steps] == [
            "00-login",
            "01-goto-users-all",
            "02-fill-user-filter",
            "03-apply-user-filter",
            "04-find-user-row",
            "05-read-balance",
            "99-final",
        ]

    @pytest.mark.anyio
    async def test_missing_user(self) -> None:
        clock = FakeClock()
        query = BalanceQuery(
            FakeConsole(ROWS),
            BalancePayload(target_user="nadie", agent="agent01", agent_password="secret"),
            timings=TIMINGS,
            authenticator=AsyncMock(),
            clock=clock,
            sleep=clock.sleep,
        )
        with pytest.raises(StepError, match="04-find-user-row"):
            await query.run()
