"""Unit tests for job, funds and player-step models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from opconsole.models.funds import FundsOperation
from opconsole.models.job import (
    BalancePayload,
    ExecutionOptions,
    FundsPayload,
    JobKind,
    JobRecord,
    JobRequest,
    JobStatus,
    LoginPayload,
    can_transition,
    new_job_request,
)
from opconsole.models.player import PlayerStep, PlayerStepType


def _funds(operation: FundsOperation = FundsOperation.DEPOSIT, amount: int | None = 10) -> FundsPayload:
    return FundsPayload(operation=operation, target_user="pruebita", agent="agent01", agent_password="x", amount=amount)


class TestJobRequest:
    def test_new_request_has_unique_id(self) -> None:
        payload = LoginPayload(username="agent01", password="x")
        first = new_job_request(JobKind.LOGIN, payload)
        second = new_job_request(JobKind.LOGIN, payload)
        assert first.id != second.id
        assert first.created_at.tzinfo is not None
        assert first.options == ExecutionOptions()

    def test_payload_must_match_kind(self) -> None:
        with pytest.raises(ValidationError, match="login job requires LoginPayload"):
            JobRequest(id="j1", kind=JobKind.LOGIN, payload=BalancePayload(target_user="a", agent="b", agent_password="c"))

    def test_funds_operation_must_match_kind(self) -> None:
        with pytest.raises(ValidationError, match="does not match job kind"):
            JobRequest(id="j1", kind=JobKind.WITHDRAWAL, payload=_funds(FundsOperation.DEPOSIT))

    def test_request_is_frozen(self) -> None:
        request = new_job_request(JobKind.DEPOSIT, _funds())
        with pytest.raises(ValidationError):
            request.kind = JobKind.BALANCE  # type: ignore[misc]


class TestFundsPayload:
    def test_amount_required_for_deposit(self) -> None:
        with pytest.raises(ValidationError, match="amount is required"):
            _funds(FundsOperation.DEPOSIT, None)

    def test_amount_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            _funds(FundsOperation.WITHDRAWAL, 0)

    def test_full_withdrawal_without_amount(self) -> None:
        assert _funds(FundsOperation.WITHDRAWAL_FULL, None).amount is None


class TestJobKind:
    def test_funds_operation(self) -> None:
        assert JobKind.DEPOSIT.funds_operation == FundsOperation.DEPOSIT
        assert JobKind.WITHDRAWAL_FULL.funds_operation == FundsOperation.WITHDRAWAL_FULL
        assert JobKind.BALANCE.funds_operation is None
        assert JobKind.LOGIN.funds_operation is None


class TestStatusTransitions:
    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (JobStatus.QUEUED, JobStatus.RUNNING),
            (JobStatus.QUEUED, JobStatus.FAILED),
            (JobStatus.RUNNING, JobStatus.SUCCEEDED),
            (JobStatus.RUNNING, JobStatus.FAILED),
            (JobStatus.SUCCEEDED, JobStatus.EXPIRED),
            (JobStatus.FAILED, JobStatus.EXPIRED),
        ],
    )
    def test_allowed(self, current: JobStatus, new: JobStatus) -> None:
        assert can_transition(current, new)

    @pytest.mark.parametrize(
        ("current", "new"),
        [
            (JobStatus.RUNNING, JobStatus.QUEUED),
            (JobStatus.SUCCEEDED, JobStatus.FAILED),
            (JobStatus.EXPIRED, JobStatus.QUEUED),
            (JobStatus.QUEUED, JobStatus.SUCCEEDED),
        ],
    )
    def test_rejected(self, current: JobStatus, new: JobStatus) -> None:
        assert not can_transition(current, new)

    def test_terminal(self) -> None:
        request = new_job_request(JobKind.DEPOSIT, _funds())
        record = JobRecord(id=request.id, kind=request.kind, created_at=request.created_at)
        assert not record.is_terminal
        assert record.model_copy(update={"status": JobStatus.EXPIRED}).is_terminal


class TestExecutionOptions:
    def test_fast_profile(self) -> None:
        assert ExecutionOptions().fast_profile
        assert not ExecutionOptions(debug_tracing=True).fast_profile
        assert not ExecutionOptions(action_delay_ms=25).fast_profile

    def test_rejects_negative_delay(self) -> None:
        with pytest.raises(ValidationError):
            ExecutionOptions(action_delay_ms=-1)


class TestPlayerStep:
    def test_goto_requires_url(self) -> None:
        with pytest.raises(ValidationError, match="goto step requires url"):
            PlayerStep(type=PlayerStepType.GOTO)

    def test_fill_requires_value(self) -> None:
        with pytest.raises(ValidationError, match="fill step requires value"):
            PlayerStep(type=PlayerStepType.FILL, selector="#user")

    def test_click_requires_selector(self) -> None:
        with pytest.raises(ValidationError, match="click step requires selector"):
            PlayerStep(type=PlayerStepType.CLICK)

    def test_display_name(self) -> None:
        assert PlayerStep(type=PlayerStepType.CLICK, selector="#go").display_name(2) == "03-click"
        named = PlayerStep(type=PlayerStepType.CLICK, selector="#go", name="05-submit")
        assert named.display_name(0) == "05-submit"
