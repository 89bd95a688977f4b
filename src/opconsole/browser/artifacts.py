"""Per-job screenshots and debug traces.

Files land under ``<artifacts_dir>/jobs/<job_id>/``. Capture is best-effort:
a failed screenshot or trace is logged and never fails the job.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^a-z0-9_-]+")


def sanitize_file_name(name: str) -> str:
    """Lowercase *name* and collapse anything outside ``[a-z0-9_-]`` to ``-``."""
    return _UNSAFE_CHARS_RE.sub("-", name.lower()).strip("-") or "step"


def job_artifact_dir(artifacts_dir: str | Path, job_id: str) -> Path:
    return Path(artifacts_dir) / "jobs" / job_id


class ArtifactRecorder:
    """Capture screenshots and Playwright traces for one job.

    Args:
        job_dir: Directory for this job's files; created on first use.
        page: Playwright page to screenshot.
        context: Playwright browser context, needed for tracing.
        capture_success: Also screenshot steps that succeed.
    """

    def __init__(self, job_dir: Path, page: Any, context: Any = None, *, capture_success: bool = False) -> None:
        self.job_dir = job_dir
        self._page = page
        self._context = context
        self.capture_success = capture_success
        self._tracing = False

    @property
    def tracing(self) -> bool:
        return self._tracing

    def _ensure_dir(self) -> None:
        self.job_dir.mkdir(parents=True, exist_ok=True)

    async def capture(self, name: str) -> str | None:
        """Save a full-page screenshot named after *name*; return its path or ``None``."""
        path = self.job_dir / f"{sanitize_file_name(name)}.png"
        try:
            self._ensure_dir()
            await self._page.screenshot(path=str(path), full_page=True)
        except Exception as exc:
            logger.warning("Could not capture screenshot %s: %s", path.name, exc)
            return None
        return str(path)

    async def capture_failure(self) -> str | None:
        return await self.capture("error")

    async def start_tracing(self) -> None:
        if self._context is None or self._tracing:
            return
        try:
            await self._context.tracing.start(screenshots=True, snapshots=True, sources=True)
            self._tracing = True
        except Exception as exc:
            logger.warning("Could not start tracing: %s", exc)

    async def stop_tracing(self, *, failed: bool = False) -> str | None:
        """Stop tracing and write ``trace.zip`` (or ``trace-failure.zip``)."""
        if not self._tracing:
            return None
        self._tracing = False
        path = self.job_dir / ("trace-failure.zip" if failed else "trace.zip")
        try:
            self._ensure_dir()
            await self._context.tracing.stop(path=str(path))
        except Exception as exc:
            logger.warning("Could not persist trace %s: %s", path.name, exc)
            return None
        return str(path)
