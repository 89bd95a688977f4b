"""FastAPI app for the operator console job API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from opconsole.api.routes import router
from opconsole.settings import Settings, get_settings
from opconsole.worker.manager import JobQueue

logger = logging.getLogger(__name__)

try:
    from importlib.metadata import version

    VERSION = version("opconsole")
except Exception:
    VERSION = "0.0.0"


def _issue_path(loc: tuple[Any, ...]) -> str:
    parts = list(loc)
    if parts and parts[0] in ("body", "path", "query"):
        parts = parts[1:]
    return ".".join(str(part) for part in parts)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    issues = [{"path": _issue_path(tuple(error.get("loc", ()))), "message": error.get("msg", "")} for error in exc.errors()]
    return JSONResponse(status_code=400, content={"message": "Invalid payload", "issues": issues})


def _build_job_manager(settings: Settings):
    from opconsole.worker.executors import JobExecutor
    from opconsole.worker.manager import JobManager

    executor = JobExecutor(settings)
    manager = JobManager(
        executor,
        concurrency=settings.jobs.concurrency,
        ttl_sec=settings.jobs.ttl_minutes * 60,
        sweep_interval_sec=settings.jobs.sweep_interval_sec,
    )
    return manager, executor


def create_app(job_queue: JobQueue | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        job_queue: Queue to enqueue jobs on. When omitted a ``JobManager``
            backed by a Playwright ``JobExecutor`` is created.
        settings: Resolved settings; defaults to :func:`get_settings`.
    """
    settings = settings or get_settings()
    executor = None
    if job_queue is None:
        job_queue, executor = _build_job_manager(settings)

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        start = getattr(job_queue, "start", None)
        if start is not None:
            start()
        logger.info("Job API ready (concurrency=%d, ttl_minutes=%d)", settings.jobs.concurrency, settings.jobs.ttl_minutes)
        try:
            yield
        finally:
            shutdown = getattr(job_queue, "shutdown", None)
            if shutdown is not None:
                await shutdown()
            if executor is not None:
                await executor.close()

    application = FastAPI(
        title="Operator Console Jobs",
        description="Queue login, player creation and funds operations against the operator console.",
        version=VERSION,
        lifespan=lifespan,
    )
    application.state.job_queue = job_queue
    application.state.settings = settings
    application.add_exception_handler(RequestValidationError, _validation_error_handler)
    application.include_router(router)
    return application
