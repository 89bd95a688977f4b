"""Pydantic data models shared across opconsole."""

from opconsole.models.funds import (
    BalanceResult,
    FundsOperation,
    FundsOutcomeSnapshot,
    RowCandidate,
    VerifyOutcome,
    VerifyState,
)
from opconsole.models.job import (
    TERMINAL_STATUSES,
    BalancePayload,
    CreatePlayerPayload,
    ExecutionFailure,
    ExecutionOptions,
    ExecutionSuccess,
    FundsPayload,
    JobKind,
    JobRecord,
    JobRequest,
    JobStatus,
    LoginPayload,
    new_job_request,
)
from opconsole.models.player import PlayerStep, PlayerStepType
from opconsole.models.steps import StepResult, StepStatus

__all__ = [
    "BalancePayload",
    "BalanceResult",
    "CreatePlayerPayload",
    "ExecutionFailure",
    "ExecutionOptions",
    "ExecutionSuccess",
    "FundsOperation",
    "FundsOutcomeSnapshot",
    "FundsPayload",
    "JobKind",
    "JobRecord",
    "JobRequest",
    "JobStatus",
    "LoginPayload",
    "PlayerStep",
    "PlayerStepType",
    "RowCandidate",
    "StepResult",
    "StepStatus",
    "TERMINAL_STATUSES",
    "VerifyOutcome",
    "VerifyState",
    "new_job_request",
]
