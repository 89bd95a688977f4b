"""Job request and job record models.

``JobRequest`` is the immutable value built by the request boundary and
handed to the job manager. ``JobRecord`` is the manager's mutable
server-side projection of one request; callers only ever see deep copies.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from opconsole.models.funds import FundsOperation
from opconsole.models.player import PlayerStep
from opconsole.models.steps import StepResult, utcnow


class JobKind(str, Enum):
    """Kinds of work the job manager can schedule."""

    LOGIN = "login"
    CREATE_PLAYER = "create-player"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_FULL = "withdrawal-full"
    BALANCE = "balance"

    @property
    def funds_operation(self) -> FundsOperation | None:
        """The money-moving operation for this kind, if any."""
        try:
            return FundsOperation(self.value)
        except ValueError:
            return None


class JobStatus(str, Enum):
    """Lifecycle states of a job record."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.EXPIRED})

# Forward-only transitions; a record never moves backwards.
STATUS_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.SUCCEEDED: frozenset({JobStatus.EXPIRED}),
    JobStatus.FAILED: frozenset({JobStatus.EXPIRED}),
    JobStatus.EXPIRED: frozenset(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    """Return ``True`` if *current* may advance to *new*."""
    return new in STATUS_TRANSITIONS[current]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class ExecutionOptions(BaseModel):
    """Per-job browser execution settings."""

    model_config = ConfigDict(frozen=True)

    headless: bool = True
    debug_tracing: bool = False
    action_delay_ms: int = Field(default=0, ge=0)
    timeout_ms: int = Field(default=30_000, ge=1)

    @property
    def fast_profile(self) -> bool:
        """No tracing and no artificial delay: eligible for session pooling."""
        return not self.debug_tracing and self.action_delay_ms == 0


class LoginPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str


class CreatePlayerPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    login_username: str
    login_password: str
    new_username: str
    new_password: str
    steps_override: tuple[PlayerStep, ...] | None = None


class FundsPayload(BaseModel):
    """Deposit / withdrawal payload. ``amount`` is ignored for full withdrawals."""

    model_config = ConfigDict(frozen=True)

    operation: FundsOperation
    target_user: str
    agent: str
    agent_password: str
    amount: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _amount_for_operation(self) -> "FundsPayload":
        if self.operation.requires_amount and self.amount is None:
            raise ValueError(f"amount is required for {self.operation.value}")
        return self


class BalancePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_user: str
    agent: str
    agent_password: str


JobPayload = Union[LoginPayload, CreatePlayerPayload, FundsPayload, BalancePayload]

_PAYLOAD_BY_KIND: dict[JobKind, type[BaseModel]] = {
    JobKind.LOGIN: LoginPayload,
    JobKind.CREATE_PLAYER: CreatePlayerPayload,
    JobKind.DEPOSIT: FundsPayload,
    JobKind.WITHDRAWAL: FundsPayload,
    JobKind.WITHDRAWAL_FULL: FundsPayload,
    JobKind.BALANCE: BalancePayload,
}


class JobRequest(BaseModel):
    """Immutable unit of work handed to the job manager."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: JobKind
    payload: JobPayload
    options: ExecutionOptions = Field(default_factory=ExecutionOptions)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "JobRequest":
        expected = _PAYLOAD_BY_KIND[self.kind]
        if not isinstance(self.payload, expected):
            raise ValueError(f"{self.kind.value} job requires {expected.__name__}")
        operation = self.kind.funds_operation
        if operation is not None and self.payload.operation != operation:  # type: ignore[union-attr]
            raise ValueError(f"payload operation does not match job kind {self.kind.value}")
        return self


def new_job_request(kind: JobKind, payload: JobPayload, options: ExecutionOptions | None = None) -> JobRequest:
    """Build a ``JobRequest`` with a fresh opaque id and creation timestamp."""
    return JobRequest(
        id=str(uuid4()),
        kind=kind,
        payload=payload,
        options=options or ExecutionOptions(),
    )


# ---------------------------------------------------------------------------
# Records and executor results
# ---------------------------------------------------------------------------


class JobRecord(BaseModel):
    """Server-side status projection of one ``JobRequest``."""

    id: str
    kind: JobKind
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None
    artifact_refs: list[str] = Field(default_factory=list)
    step_history: list[StepResult] = Field(default_factory=list)
    result: dict[str, Any] | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ExecutionSuccess(BaseModel):
    """Executor outcome for a job that completed."""

    artifact_refs: list[str] = Field(default_factory=list)
    steps: list[StepResult] = Field(default_factory=list)
    result: dict[str, Any] | None = None


class ExecutionFailure(BaseModel):
    """Executor outcome for a job that failed, with partial diagnostics."""

    reason: str
    partial_steps: list[StepResult] = Field(default_factory=list)
    partial_artifacts: list[str] = Field(default_factory=list)


ExecutionResult = Union[ExecutionSuccess, ExecutionFailure]
