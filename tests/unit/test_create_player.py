"""Unit tests for the create-player form runner."""

from __future__ import annotations

import re

import pytest

from opconsole.exceptions import StepError
from opconsole.models.job import CreatePlayerPayload
from opconsole.models.player import PlayerStep, PlayerStepType
from opconsole.models.steps import StepStatus
from opconsole.worker.create_player_job import (
    DEFAULT_PLAYER_STEPS,
    VERIFY_STEP_NAME,
    PlayerFormRunner,
    resolve_template,
    template_variables,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeLocator:
    def __init__(self, page: "FakePage", key: str) -> None:
        self._page = page
        self._key = key

    @property
    def first(self) -> "FakeLocator":
        return self

    async def wait_for(self, *, state: str, timeout: int) -> None:
        if self._key in self._page.missing:
            raise TimeoutError(f"Timeout {timeout}ms waiting for {self._key}")
        self._page.actions.append(("wait_for", self._key))

    async def fill(self, value: str, *, timeout: int) -> None:
        self._page.actions.append(("fill", self._key, value))

    async def click(self, *, timeout: int) -> None:
        self._page.actions.append(("click", self._key))

    async def is_visible(self) -> bool:
        return self._key in self._page.texts

    async def inner_text(self) -> str:
        return self._page.texts[self._key]


class FakePage:
    def __init__(self) -> None:
        self.url = "https://console.test/users/create-player"
        self.actions: list[tuple] = []
        self.missing: set[str] = set()
        self.texts: dict[str, str] = {}

    async def goto(self, url: str, *, wait_until: str, timeout: int) -> None:
        self.actions.append(("goto", url))

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    def get_by_text(self, pattern: re.Pattern[str]) -> FakeLocator:
        for key, text in self.texts.items():
            if pattern.search(text):
                return FakeLocator(self, key)
        return FakeLocator(self, "<none>")


PAYLOAD = CreatePlayerPayload(
    login_username="agent01", login_password="secret", new_username="nuevo01", new_password="pw123"
)


def _runner(page: FakePage) -> tuple[PlayerFormRunner, FakeClock]:
    clock = FakeClock()
    runner = PlayerFormRunner(
        page, template_variables(PAYLOAD), None, default_timeout_ms=1_000, clock=clock, sleep=clock.sleep
    )
    return runner, clock


class TestTemplates:
    def test_resolves_known_variables(self) -> None:
        variables = template_variables(PAYLOAD)
        assert resolve_template("{{new_username}}:{{login_username}}", variables) == "nuevo01:agent01"

    def test_unknown_variable_left_in_place(self) -> None:
        assert resolve_template("{{nope}}-{{new_password}}", template_variables(PAYLOAD)) == "{{nope}}-pw123"

    def test_plain_text_unchanged(self) -> None:
        assert resolve_template("literal", {}) == "literal"


def test_default_steps_are_named_in_order() -> None:
    names = [step.display_name(i) for i, step in enumerate(DEFAULT_PLAYER_STEPS)]
    assert names[0] == "01-goto-create-player"
    assert names[-1] == "08-click-confirm-submit"
    assert len(names) == 8


class TestPlayerFormRunner:
    @pytest.mark.anyio
    async def test_runs_steps_with_templates(self) -> None:
        page = FakePage()
        runner, _ = _runner(page)
        steps = [
            PlayerStep(type=PlayerStepType.GOTO, url="/users/create-player"),
            PlayerStep(type=PlayerStepType.FILL, selector="#user", value="{{new_username}}"),
            PlayerStep(type=PlayerStepType.WAIT_FOR, selector="#submit"),
            PlayerStep(type=PlayerStepType.CLICK, selector="#submit", name="submit"),
        ]

        await runner.run_steps(steps)

        assert page.actions == [
            ("goto", "/users/create-player"),
            ("wait_for", "#user"),
            ("fill", "#user", "nuevo01"),
            ("wait_for", "#submit"),
            ("wait_for", "#submit"),
            ("click", "#submit"),
        ]
        assert [s.name for s in runner.steps] == ["01-goto", "02-fill", "03-wait_for", "submit"]
        assert all(s.ok for s in runner.steps)

    @pytest.mark.anyio
    async def test_stops_at_first_failed_step(self) -> None:
        page = FakePage()
        page.missing.add("#missing")
        runner, _ = _runner(page)
        steps = [
            PlayerStep(type=PlayerStepType.CLICK, selector="#missing"),
            PlayerStep(type=PlayerStepType.CLICK, selector="#after"),
        ]

        with pytest.raises(StepError, match="01-click"):
            await runner.run_steps(steps)

        assert len(runner.steps) == 1
        assert runner.steps[0].status == StepStatus.FAILED
        assert "#missing" in runner.steps[0].error
        assert ("click", "#after") not in page.actions

    @pytest.mark.anyio
    async def test_verify_navigation_away(self) -> None:
        page = FakePage()
        page.url = "https://console.test/users/all"
        runner, _ = _runner(page)

        await runner.verify(1_000)

        assert runner.steps[-1].name == VERIFY_STEP_NAME
        assert runner.steps[-1].ok

    @pytest.mark.anyio
    async def test_verify_success_message(self) -> None:
        page = FakePage()
        page.texts["toast"] = "Jugador creado correctamente"
        runner, _ = _runner(page)
        ok, reason = await runner.wait_for_result(1_000)
        assert ok is True
        assert reason == "Jugador creado correctamente"

    @pytest.mark.anyio
    async def test_verify_error_message(self) -> None:
        page = FakePage()
        page.texts["toast"] = "El usuario ya existe"
        runner, _ = _runner(page)

        with pytest.raises(StepError, match="ya existe"):
            await runner.verify(1_000)

        assert runner.steps[-1].status == StepStatus.FAILED

    @pytest.mark.anyio
    async def test_verify_timeout(self) -> None:
        page = FakePage()
        runner, clock = _runner(page)

        ok, reason = await runner.wait_for_result(1_000)

        assert ok is False
        assert reason == "No clear success signal detected after submit"
        assert clock.now == pytest.approx(1.0)
