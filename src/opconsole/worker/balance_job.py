"""Balance query job."""

from __future__ import annotations

import logging

from opconsole.browser.console import PlaywrightConsoleDriver
from opconsole.browser.session_pool import SessionPool
from opconsole.exceptions import ResourceError
from opconsole.funds.machine import BalanceQuery, FundsTimings
from opconsole.models.job import BalancePayload, ExecutionFailure, ExecutionResult, ExecutionSuccess, JobRequest
from opconsole.settings.config import Settings
from opconsole.worker.common import (
    collect_failure_artifacts,
    make_authenticator,
    make_recorder,
    session_profile,
    wait_before_close,
)

logger = logging.getLogger(__name__)


async def run_balance_job(request: JobRequest, settings: Settings, pool: SessionPool) -> ExecutionResult:
    """Read the target player's balance from the users listing.

    The result carries ``target_user``, the raw ``balance_text`` and the
    parsed ``balance``.
    """
    payload = request.payload
    if not isinstance(payload, BalancePayload):
        return ExecutionFailure(reason="balance job requires a balance payload")
    options = request.options

    try:
        lease = await pool.acquire(payload.agent, session_profile(settings, options))
    except ResourceError as exc:
        return ExecutionFailure(reason=str(exc))

    try:
        recorder = make_recorder(
            settings, request, lease.page, lease.context, capture_success=settings.funds.capture_success_artifacts
        )
        timings = FundsTimings.for_options(options)
        query = BalanceQuery(
            PlaywrightConsoleDriver(lease.page, interval_ms=timings.interval_ms),
            payload,
            timings=timings,
            authenticator=make_authenticator(
                lease.page, settings, payload.agent, payload.agent_password, timeout_ms=options.timeout_ms
            ),
            recorder=recorder,
        )

        if options.debug_tracing:
            await recorder.start_tracing()

        try:
            result = await query.run()
        except Exception as exc:
            logger.error("Balance job failed (job_id=%s): %s", request.id, exc)
            artifacts = list(query.artifacts) + await collect_failure_artifacts(recorder)
            await wait_before_close(options, settings.funds.debug_close_delay_ms)
            await lease.invalidate()
            return ExecutionFailure(
                reason=str(exc) or exc.__class__.__name__,
                partial_steps=list(query.steps),
                partial_artifacts=artifacts,
            )

        artifacts = list(query.artifacts)
        trace = await recorder.stop_tracing()
        if trace:
            artifacts.append(trace)
        await wait_before_close(options, settings.funds.debug_close_delay_ms)
        await lease.release()
    finally:
        if not lease.released:
            logger.warning("Balance job exited holding its session; invalidating (job_id=%s)", request.id)
            await lease.invalidate()

    logger.info("Balance read (job_id=%s, target=%s, balance=%s)", request.id, result.target_user, result.balance_text)
    return ExecutionSuccess(artifact_refs=artifacts, steps=list(query.steps), result=result.model_dump(mode="json"))
