"""Step-level result models shared by every job executor."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class StepStatus(str, Enum):
    """Outcome of a single named step."""

    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepResult(BaseModel):
    """Outcome of one named step of a job execution.

    Step histories are append-only: executors add results in order and never
    rewrite an entry once another step has started.
    """

    name: str
    status: StepStatus
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime = Field(default_factory=utcnow)
    artifact_ref: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == StepStatus.OK
