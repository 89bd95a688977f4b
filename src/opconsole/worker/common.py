"""Helpers shared by the per-kind job runners."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from opconsole.browser.artifacts import ArtifactRecorder, job_artifact_dir
from opconsole.browser.auth import authenticate_with_retry, ensure_authenticated
from opconsole.browser.session_pool import SessionProfile
from opconsole.models.job import ExecutionOptions, JobRequest
from opconsole.settings.config import Settings

logger = logging.getLogger(__name__)


def session_profile(settings: Settings, options: ExecutionOptions) -> SessionProfile:
    return SessionProfile.for_job(
        options,
        base_url=settings.site.base_url,
        block_resources=settings.browser.block_resources,
    )


def make_recorder(
    settings: Settings, request: JobRequest, page: Any, context: Any, *, capture_success: bool
) -> ArtifactRecorder:
    return ArtifactRecorder(
        job_artifact_dir(settings.artifacts_dir, request.id),
        page,
        context,
        capture_success=capture_success,
    )


def make_authenticator(page: Any, settings: Settings, username: str, password: str, *, timeout_ms: int):
    """Return a coroutine function that logs *username* in with the retry policy."""

    async def _login() -> None:
        await ensure_authenticated(page, settings.site, username, password, timeout_ms=timeout_ms)

    async def _authenticate() -> None:
        await authenticate_with_retry(_login)

    return _authenticate


async def collect_failure_artifacts(recorder: ArtifactRecorder) -> list[str]:
    """Capture ``error.png`` and stop any running trace as ``trace-failure.zip``."""
    refs: list[str] = []
    screenshot = await recorder.capture_failure()
    if screenshot:
        refs.append(screenshot)
    trace = await recorder.stop_tracing(failed=True)
    if trace:
        refs.append(trace)
    return refs


async def wait_before_close(options: ExecutionOptions, delay_ms: int) -> None:
    """Keep a headed debug browser open for *delay_ms* so the operator can look at it."""
    if options.headless or not options.debug_tracing or delay_ms <= 0:
        return
    logger.debug("Holding headed debug browser open for %d ms", delay_ms)
    await asyncio.sleep(delay_ms / 1000)
