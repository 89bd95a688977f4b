"""Unit tests for the login retry policy."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from opconsole.browser.auth import authenticate_with_retry, is_non_retryable, persist_storage_state
from opconsole.exceptions import AuthenticationError


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.mark.parametrize(
    "message",
    ["Usuario no autorizado", "Contraseña no corregida", "credenciales incorrectas", "Wrong PASSWORD"],
)
def test_rejected_credentials_are_not_retryable(message: str) -> None:
    assert is_non_retryable(message)


def test_timeouts_are_retryable() -> None:
    assert not is_non_retryable("Authentication did not complete before timeout")


@pytest.mark.anyio
async def test_first_attempt_success() -> None:
    login = AsyncMock()
    sleep = RecordingSleep()
    await authenticate_with_retry(login, sleep=sleep)
    assert login.await_count == 1
    assert sleep.calls == []


@pytest.mark.anyio
async def test_transient_failure_retried_once() -> None:
    login = AsyncMock(side_effect=[TimeoutError("navigation timeout"), None])
    sleep = RecordingSleep()

    await authenticate_with_retry(login, retry_delay_ms=1_500, sleep=sleep)

    assert login.await_count == 2
    assert sleep.calls == [1.5]


@pytest.mark.anyio
async def test_rejection_message_stops_immediately() -> None:
    login = AsyncMock(side_effect=RuntimeError("Usuario no autorizado"))
    sleep = RecordingSleep()

    with pytest.raises(AuthenticationError) as exc_info:
        await authenticate_with_retry(login, sleep=sleep)

    assert login.await_count == 1
    assert exc_info.value.retryable is False
    assert str(exc_info.value) == "Usuario no autorizado"


@pytest.mark.anyio
async def test_error_flagged_not_retryable_stops_immediately() -> None:
    error = AuthenticationError("cuenta bloqueada", retryable=False)
    login = AsyncMock(side_effect=error)

    with pytest.raises(AuthenticationError) as exc_info:
        await authenticate_with_retry(login, sleep=RecordingSleep())

    assert exc_info.value is error
    assert login.await_count == 1


@pytest.mark.anyio
async def test_attempts_exhausted() -> None:
    login = AsyncMock(side_effect=TimeoutError("navigation timeout"))
    sleep = RecordingSleep()

    with pytest.raises(AuthenticationError, match="navigation timeout") as exc_info:
        await authenticate_with_retry(login, max_attempts=3, retry_delay_ms=10, sleep=sleep)

    assert login.await_count == 3
    assert sleep.calls == [0.01, 0.01]
    assert exc_info.value.retryable is True


@pytest.mark.anyio
async def test_persist_storage_state(tmp_path: Path) -> None:
    context = AsyncMock()
    target = tmp_path / "state" / "session.json"

    ref = await persist_storage_state(context, target)

    assert ref == str(target)
    assert target.parent.is_dir()
    context.storage_state.assert_awaited_once_with(path=str(target))
