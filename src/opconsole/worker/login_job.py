"""Agent login job on a single-use browser session."""

from __future__ import annotations

import logging
from pathlib import Path

from opconsole.browser.auth import ensure_authenticated, persist_storage_state
from opconsole.browser.session_pool import SessionFactory
from opconsole.models.job import ExecutionFailure, ExecutionResult, ExecutionSuccess, JobRequest, LoginPayload
from opconsole.models.steps import StepResult, StepStatus, utcnow
from opconsole.settings.config import Settings
from opconsole.worker.common import collect_failure_artifacts, make_recorder, session_profile

logger = logging.getLogger(__name__)


async def run_login_job(
    request: JobRequest,
    settings: Settings,
    factory: SessionFactory,
    *,
    storage_state_path: Path | None = None,
) -> ExecutionResult:
    """Log in once and capture a final screenshot.

    Args:
        request: A ``login`` job request.
        settings: Resolved settings (site selectors, artifact directory).
        factory: Creates the throwaway browser session.
        storage_state_path: When set, the authenticated cookies and local
            storage are written there.
    """
    payload = request.payload
    if not isinstance(payload, LoginPayload):
        return ExecutionFailure(reason="login job requires a login payload")
    options = request.options

    try:
        session = await factory.create(session_profile(settings, options))
    except Exception as exc:
        return ExecutionFailure(reason=f"Could not start browser session: {exc}")

    recorder = make_recorder(settings, request, session.page, session.context, capture_success=True)
    artifacts: list[str] = []
    steps: list[StepResult] = []
    try:
        if options.debug_tracing:
            await recorder.start_tracing()

        started = utcnow()
        try:
            await ensure_authenticated(
                session.page, settings.site, payload.username, payload.password, timeout_ms=options.timeout_ms
            )
        except Exception as exc:
            logger.error("Login job failed (job_id=%s): %s", request.id, exc)
            steps.append(StepResult(name="login", status=StepStatus.FAILED, started_at=started, error=str(exc)))
            artifacts.extend(await collect_failure_artifacts(recorder))
            return ExecutionFailure(reason=str(exc), partial_steps=steps, partial_artifacts=artifacts)

        final = await recorder.capture("final")
        if final:
            artifacts.append(final)
        steps.append(StepResult(name="login", status=StepStatus.OK, started_at=started, artifact_ref=final))

        if storage_state_path is not None:
            await persist_storage_state(session.context, storage_state_path)

        trace = await recorder.stop_tracing()
        if trace:
            artifacts.append(trace)
        return ExecutionSuccess(artifact_refs=artifacts, steps=steps)
    finally:
        try:
            await factory.close(session)
        except Exception as exc:
            logger.warning("Could not close login session (non-fatal): %s", exc)
