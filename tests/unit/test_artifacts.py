"""Unit tests for the per-job artifact recorder."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from opconsole.browser.artifacts import ArtifactRecorder, job_artifact_dir, sanitize_file_name
from opconsole.logging_config import JsonFormatter


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("08-verify-deposit-result", "08-verify-deposit-result"),
        ("Paso Final!", "paso-final"),
        ("../../etc", "etc"),
        ("***", "step"),
    ],
)
def test_sanitize_file_name(raw: str, expected: str) -> None:
    assert sanitize_file_name(raw) == expected


def test_job_artifact_dir(tmp_path: Path) -> None:
    assert job_artifact_dir(tmp_path, "abc") == tmp_path / "jobs" / "abc"


@pytest.mark.anyio
async def test_capture_writes_under_job_dir(tmp_path: Path) -> None:
    page = MagicMock()
    page.screenshot = AsyncMock()
    recorder = ArtifactRecorder(tmp_path / "jobs" / "j1", page)

    ref = await recorder.capture("01-Goto Users")

    assert ref == str(tmp_path / "jobs" / "j1" / "01-goto-users.png")
    page.screenshot.assert_awaited_once_with(path=ref, full_page=True)


@pytest.mark.anyio
async def test_capture_failure_is_best_effort(tmp_path: Path) -> None:
    page = MagicMock()
    page.screenshot = AsyncMock(side_effect=RuntimeError("page closed"))
    recorder = ArtifactRecorder(tmp_path, page)
    assert await recorder.capture_failure() is None


@pytest.mark.anyio
async def test_tracing_round(tmp_path: Path) -> None:
    context = MagicMock()
    context.tracing.start = AsyncMock()
    context.tracing.stop = AsyncMock()
    recorder = ArtifactRecorder(tmp_path, MagicMock(), context)

    await recorder.start_tracing()
    assert recorder.tracing
    ref = await recorder.stop_tracing(failed=True)

    assert ref == str(tmp_path / "trace-failure.zip")
    assert not recorder.tracing
    assert await recorder.stop_tracing() is None


@pytest.mark.anyio
async def test_tracing_without_context(tmp_path: Path) -> None:
    recorder = ArtifactRecorder(tmp_path, MagicMock())
    await recorder.start_tracing()
    assert not recorder.tracing


def test_json_formatter() -> None:
    record = logging.LogRecord("opconsole.worker", logging.WARNING, __file__, 1, "Job failed (job_id=%s)", ("j1",), None)
    entry = json.loads(JsonFormatter().format(record))
    assert entry["severity"] == "WARNING"
    assert entry["message"] == "Job failed (job_id=j1)"
    assert entry["logger"] == "opconsole.worker"
    assert "exception" not in entry
