"""Create-player job: log in as the agent and fill the new-player form.

The form is driven by an ordered list of ``PlayerStep`` actions. The
default sequence below matches the console's ``/users/create-player``
page; a request may replace it with ``steps_override``. After the steps
run, the result is verified by watching for a success or error message,
or for a navigation away from the form.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any

from opconsole.browser.artifacts import ArtifactRecorder
from opconsole.browser.polling import Clock, Sleep, poll_until
from opconsole.browser.session_pool import SessionFactory
from opconsole.exceptions import StepError
from opconsole.models.job import (
    CreatePlayerPayload,
    ExecutionFailure,
    ExecutionResult,
    ExecutionSuccess,
    JobRequest,
)
from opconsole.models.player import PlayerStep, PlayerStepType
from opconsole.models.steps import StepResult, StepStatus, utcnow
from opconsole.settings.config import Settings
from opconsole.worker.common import (
    collect_failure_artifacts,
    make_authenticator,
    make_recorder,
    session_profile,
    wait_before_close,
)

logger = logging.getLogger(__name__)

CREATE_PLAYER_PATH = "/users/create-player"

_USERNAME_INPUT = (
    'input[name="username"], input[name="login"], input[autocomplete="username"], '
    'input[placeholder*="usuario" i], input[placeholder*="user" i]'
)
_PASSWORD_INPUT = 'input[name="password"], input[type="password"]'
_PASSWORD_CONFIRM_INPUT = (
    'input[name="password_confirmation"], input[name="passwordConfirm"], input[name="confirmPassword"], '
    'input[name*="confirm" i], input[id*="confirm" i], input[placeholder*="confirm" i], '
    'input[name*="repet" i], input[placeholder*="repet" i]'
)
_SUBMIT_BUTTON = (
    'button[type="submit"], button:has-text("Registrar"), button:has-text("Register"), '
    'button:has-text("Create"), button:has-text("Crear"), button:has-text("Nuevo jugador"), '
    'button:has-text("Save"), button:has-text("Guardar"), '
    'input[type="submit"][value*="Registrar" i], input[type="submit"][value*="Register" i]'
)
_CONFIRM_BUTTON = ", ".join(
    f'{container} button:has-text("{label}")'
    for container in ('[role="dialog"]', ".modal.show", ".swal2-container", ".swal-modal", ".swal-overlay--show-modal")
    for label in ("Crear jugador", "Registrar")
)

DEFAULT_PLAYER_STEPS: tuple[PlayerStep, ...] = (
    PlayerStep(type=PlayerStepType.GOTO, url=CREATE_PLAYER_PATH, name="01-goto-create-player"),
    PlayerStep(type=PlayerStepType.WAIT_FOR, selector=_USERNAME_INPUT, name="02-wait-username"),
    PlayerStep(type=PlayerStepType.FILL, selector=_USERNAME_INPUT, value="{{new_username}}", name="03-fill-username"),
    PlayerStep(type=PlayerStepType.FILL, selector=_PASSWORD_INPUT, value="{{new_password}}", name="04-fill-password"),
    PlayerStep(
        type=PlayerStepType.FILL,
        selector=_PASSWORD_CONFIRM_INPUT,
        value="{{new_password}}",
        name="05-fill-password-confirm",
    ),
    PlayerStep(type=PlayerStepType.CLICK, selector=_SUBMIT_BUTTON, name="06-click-submit"),
    PlayerStep(type=PlayerStepType.WAIT_FOR, selector=_CONFIRM_BUTTON, name="07-wait-confirm-submit"),
    PlayerStep(type=PlayerStepType.CLICK, selector=_CONFIRM_BUTTON, name="08-click-confirm-submit"),
)

VERIFY_STEP_NAME = "09-verify-create-player-result"
CREATE_SUCCESS_RE = re.compile(r"cread[oa]|registrad[oa]|correctamente|success|[eé]xito", re.IGNORECASE)
CREATE_ERROR_RE = re.compile(
    r"ya existe|error|fall[oó]|fallid[oa]|inv[aá]lido|invalid|no se pudo|incorrect[oa]", re.IGNORECASE
)

_TEMPLATE_RE = re.compile(r"\{\{(\w+)\}\}")


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def template_variables(payload: CreatePlayerPayload) -> dict[str, str]:
    return {
        "new_username": payload.new_username,
        "new_password": payload.new_password,
        "login_username": payload.login_username,
        "login_password": payload.login_password,
    }


def resolve_template(template: str, variables: dict[str, str]) -> str:
    """Replace ``{{name}}`` placeholders with values from *variables*.

    Unresolved placeholders are left as-is and logged as warnings.

    >>> resolve_template("{{new_username}}@x", {"new_username": "bob"})
    'bob@x'
    """
    if "{{" not in template:
        return template

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        value = variables.get(key)
        if value is not None:
            return value
        logger.warning("Unresolved template variable: %s", key)
        return match.group(0)

    return _TEMPLATE_RE.sub(_replace, template)


# ---------------------------------------------------------------------------
# Step runner
# ---------------------------------------------------------------------------


class PlayerFormRunner:
    """Run ``PlayerStep`` actions against a Playwright page.

    Args:
        page: Authenticated Playwright page.
        variables: Template values for ``url`` and ``value`` fields.
        recorder: Captures a screenshot after each successful step.
        default_timeout_ms: Used by steps without their own ``timeout_ms``.
    """

    def __init__(
        self,
        page: Any,
        variables: dict[str, str],
        recorder: ArtifactRecorder | None,
        *,
        default_timeout_ms: int,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._page = page
        self._variables = variables
        self._recorder = recorder
        self.default_timeout_ms = default_timeout_ms
        self._clock = clock
        self._sleep = sleep
        self.steps: list[StepResult] = []
        self.artifacts: list[str] = []

    async def capture(self, name: str) -> str | None:
        if self._recorder is None:
            return None
        ref = await self._recorder.capture(name)
        if ref:
            self.artifacts.append(ref)
        return ref

    def _append(self, step: StepResult) -> None:
        self.steps.append(step)
        if step.status == StepStatus.FAILED:
            raise StepError(step)

    async def run_steps(self, steps: tuple[PlayerStep, ...] | list[PlayerStep]) -> None:
        """Execute *steps* in order, stopping at the first failure.

        Raises:
            StepError: The first failed step.
        """
        for index, step in enumerate(steps):
            name = step.display_name(index)
            started = utcnow()
            try:
                await self._dispatch(step, step.timeout_ms or self.default_timeout_ms)
            except Exception as exc:
                logger.debug("Player step %s error: %s", name, exc)
                self._append(StepResult(name=name, status=StepStatus.FAILED, started_at=started, error=str(exc)))
            artifact = await self.capture(name)
            self._append(StepResult(name=name, status=StepStatus.OK, started_at=started, artifact_ref=artifact))

    async def _dispatch(self, step: PlayerStep, timeout_ms: int) -> None:
        if step.type == PlayerStepType.GOTO:
            url = resolve_template(step.url or "", self._variables)
            await self._page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            return

        locator = self._page.locator(step.selector).first
        await locator.wait_for(state="visible", timeout=timeout_ms)
        if step.type == PlayerStepType.FILL:
            await locator.fill(resolve_template(step.value or "", self._variables), timeout=timeout_ms)
        elif step.type == PlayerStepType.CLICK:
            await locator.click(timeout=timeout_ms)

    async def _visible_text(self, pattern: re.Pattern[str]) -> str | None:
        locator = self._page.get_by_text(pattern).first
        try:
            if not await locator.is_visible():
                return None
            return (await locator.inner_text()).strip()
        except Exception:
            return None

    async def wait_for_result(self, timeout_ms: int) -> tuple[bool, str]:
        """Poll for navigation away from the form, an error, or a success message."""

        async def check() -> tuple[bool, str] | None:
            url = self._page.url
            if CREATE_PLAYER_PATH not in url:
                return True, f"URL changed after submit: {url}"
            error = await self._visible_text(CREATE_ERROR_RE)
            if error is not None:
                return False, error or "Error message detected after submit"
            success = await self._visible_text(CREATE_SUCCESS_RE)
            if success is not None:
                return True, success or "Success message detected after submit"
            return None

        outcome = await poll_until(check, timeout_ms=timeout_ms, interval_ms=250, clock=self._clock, sleep=self._sleep)
        if outcome is None:
            return False, "No clear success signal detected after submit"
        return outcome

    async def verify(self, timeout_ms: int) -> None:
        started = utcnow()
        ok, reason = await self.wait_for_result(timeout_ms)
        artifact = await self.capture(VERIFY_STEP_NAME)
        if ok:
            logger.info("Create-player verified: %s", reason)
            self._append(StepResult(name=VERIFY_STEP_NAME, status=StepStatus.OK, started_at=started, artifact_ref=artifact))
            return
        self._append(
            StepResult(
                name=VERIFY_STEP_NAME,
                status=StepStatus.FAILED,
                started_at=started,
                artifact_ref=artifact,
                error=reason,
            )
        )


# ---------------------------------------------------------------------------
# Job entry point
# ---------------------------------------------------------------------------


async def run_create_player_job(request: JobRequest, settings: Settings, factory: SessionFactory) -> ExecutionResult:
    """Log in as the agent and create a new player account."""
    payload = request.payload
    if not isinstance(payload, CreatePlayerPayload):
        return ExecutionFailure(reason="create-player job requires a create-player payload")
    options = request.options

    try:
        session = await factory.create(session_profile(settings, options))
    except Exception as exc:
        return ExecutionFailure(reason=f"Could not start browser session: {exc}")

    recorder = make_recorder(settings, request, session.page, session.context, capture_success=True)
    runner = PlayerFormRunner(
        session.page, template_variables(payload), recorder, default_timeout_ms=options.timeout_ms
    )
    authenticate = make_authenticator(
        session.page, settings, payload.login_username, payload.login_password, timeout_ms=options.timeout_ms
    )
    steps_to_run = payload.steps_override or DEFAULT_PLAYER_STEPS

    try:
        if options.debug_tracing:
            await recorder.start_tracing()

        started = utcnow()
        try:
            await authenticate()
        except Exception as exc:
            runner.steps.append(StepResult(name="00-login", status=StepStatus.FAILED, started_at=started, error=str(exc)))
            raise
        login_artifact = await runner.capture("00-login")
        runner.steps.append(
            StepResult(name="00-login", status=StepStatus.OK, started_at=started, artifact_ref=login_artifact)
        )

        await runner.run_steps(steps_to_run)
        await runner.verify(options.timeout_ms)

        final_started = utcnow()
        final = await runner.capture("99-final")
        runner.steps.append(StepResult(name="99-final", status=StepStatus.OK, started_at=final_started, artifact_ref=final))
    except Exception as exc:
        logger.error("Create-player job failed (job_id=%s): %s", request.id, exc)
        artifacts = list(runner.artifacts) + await collect_failure_artifacts(recorder)
        await wait_before_close(options, settings.funds.debug_close_delay_ms)
        await _close(factory, session)
        return ExecutionFailure(
            reason=str(exc) or exc.__class__.__name__,
            partial_steps=list(runner.steps),
            partial_artifacts=artifacts,
        )

    artifacts = list(runner.artifacts)
    trace = await recorder.stop_tracing()
    if trace:
        artifacts.append(trace)
    await wait_before_close(options, settings.funds.debug_close_delay_ms)
    await _close(factory, session)
    logger.info("Player created (job_id=%s, username=%s)", request.id, payload.new_username)
    return ExecutionSuccess(artifact_refs=artifacts, steps=list(runner.steps), result={"username": payload.new_username})


async def _close(factory: SessionFactory, session: Any) -> None:
    try:
        await factory.close(session)
    except Exception as exc:
        logger.warning("Could not close create-player session (non-fatal): %s", exc)
