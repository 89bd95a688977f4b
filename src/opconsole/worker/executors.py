"""Dispatch job requests to the runner for their kind.

``JobExecutor`` owns the browser resources shared by every job in the
process: one ``PlaywrightSessionFactory`` and one ``SessionPool``. It is
the executor callable handed to ``JobManager``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from opconsole.browser.launcher import PlaywrightSessionFactory
from opconsole.browser.session_pool import SessionFactory, SessionPool
from opconsole.models.job import ExecutionFailure, ExecutionResult, JobKind, JobRequest
from opconsole.settings.config import Settings
from opconsole.worker.balance_job import run_balance_job
from opconsole.worker.create_player_job import run_create_player_job
from opconsole.worker.funds_job import run_funds_job
from opconsole.worker.login_job import run_login_job

logger = logging.getLogger(__name__)


class JobExecutor:
    """Run a ``JobRequest`` and return its structured outcome.

    Args:
        settings: Resolved settings.
        factory: Browser session factory; defaults to Playwright.
        pool: Session pool for funds and balance jobs; built from
            ``settings.pool`` when omitted.
        storage_state_path: Passed to login jobs to persist the session.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        factory: SessionFactory | None = None,
        pool: SessionPool | None = None,
        storage_state_path: Path | None = None,
    ) -> None:
        self.settings = settings
        self.factory = factory or PlaywrightSessionFactory()
        self.pool = pool or SessionPool(
            self.factory,
            enabled=settings.pool.enabled,
            ttl_sec=settings.pool.ttl_sec,
            max_agents=settings.pool.max_agents,
        )
        self.storage_state_path = storage_state_path

    async def __call__(self, request: JobRequest) -> ExecutionResult:
        logger.debug("Dispatching job %s (kind=%s)", request.id, request.kind.value)
        if request.kind == JobKind.LOGIN:
            return await run_login_job(
                request, self.settings, self.factory, storage_state_path=self.storage_state_path
            )
        if request.kind == JobKind.CREATE_PLAYER:
            return await run_create_player_job(request, self.settings, self.factory)
        if request.kind == JobKind.BALANCE:
            return await run_balance_job(request, self.settings, self.pool)
        if request.kind.funds_operation is not None:
            return await run_funds_job(request, self.settings, self.pool)
        return ExecutionFailure(reason=f"Unsupported job kind: {request.kind.value}")

    async def close(self) -> None:
        """Close pooled sessions and stop the browser driver."""
        await self.pool.close_all()
        shutdown = getattr(self.factory, "shutdown", None)
        if shutdown is not None:
            await shutdown()
