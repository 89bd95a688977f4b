"""Deposit and withdrawal jobs on a pooled agent session."""

from __future__ import annotations

import logging

from opconsole.browser.console import PlaywrightConsoleDriver
from opconsole.browser.session_pool import SessionPool
from opconsole.exceptions import ResourceError
from opconsole.funds.machine import FundsTimings, FundsTransaction
from opconsole.models.job import ExecutionFailure, ExecutionResult, ExecutionSuccess, FundsPayload, JobRequest
from opconsole.settings.config import Settings
from opconsole.worker.common import (
    collect_failure_artifacts,
    make_authenticator,
    make_recorder,
    session_profile,
    wait_before_close,
)

logger = logging.getLogger(__name__)


async def run_funds_job(request: JobRequest, settings: Settings, pool: SessionPool) -> ExecutionResult:
    """Run one deposit, withdrawal or full withdrawal.

    The agent's session is leased from *pool*: released on success so the
    next job for the same agent can reuse it, invalidated on failure so a
    half-broken page is never handed out again. A lease still held when the
    job exits by any other route, cancellation included, is invalidated.
    """
    payload = request.payload
    if not isinstance(payload, FundsPayload):
        return ExecutionFailure(reason=f"{request.kind.value} job requires a funds payload")
    options = request.options

    try:
        lease = await pool.acquire(payload.agent, session_profile(settings, options))
    except ResourceError as exc:
        return ExecutionFailure(reason=str(exc))

    try:
        logger.info(
            "Funds job on %s session (job_id=%s, agent=%s, key=%s)",
            "reused" if lease.reused else "new",
            request.id,
            payload.agent,
            lease.key,
        )
        recorder = make_recorder(
            settings, request, lease.page, lease.context, capture_success=settings.funds.capture_success_artifacts
        )
        timings = FundsTimings.for_options(options)
        transaction = FundsTransaction(
            PlaywrightConsoleDriver(lease.page, interval_ms=timings.interval_ms),
            payload,
            timings=timings,
            authenticator=make_authenticator(
                lease.page, settings, payload.agent, payload.agent_password, timeout_ms=options.timeout_ms
            ),
            recorder=recorder,
            tolerance=settings.funds.reconcile_tolerance,
        )

        if options.debug_tracing:
            await recorder.start_tracing()

        try:
            steps = await transaction.run()
        except Exception as exc:
            logger.error("Funds job failed (job_id=%s): %s", request.id, exc)
            artifacts = list(transaction.artifacts) + await collect_failure_artifacts(recorder)
            await wait_before_close(options, settings.funds.debug_close_delay_ms)
            await lease.invalidate()
            return ExecutionFailure(
                reason=str(exc) or exc.__class__.__name__,
                partial_steps=list(transaction.steps),
                partial_artifacts=artifacts,
            )

        artifacts = list(transaction.artifacts)
        trace = await recorder.stop_tracing()
        if trace:
            artifacts.append(trace)
        await wait_before_close(options, settings.funds.debug_close_delay_ms)
        await lease.release()
    finally:
        if not lease.released:
            logger.warning("Funds job exited holding its session; invalidating (job_id=%s)", request.id)
            await lease.invalidate()

    snapshot = transaction.snapshot
    return ExecutionSuccess(
        artifact_refs=artifacts,
        steps=steps,
        result={
            "operation": payload.operation.value,
            "target_user": payload.target_user,
            "amount": payload.amount,
            "balance_before": snapshot.balance_before,
            "target_id": snapshot.resolved_target_id,
        },
    )
