"""HTTP routes: enqueue console jobs and report their status."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationInfo, field_validator, model_validator

from opconsole.exceptions import ValidationFailure
from opconsole.funds.operation import ACCEPTED_OPERATIONS, require_funds_operation
from opconsole.models.job import (
    BalancePayload,
    CreatePlayerPayload,
    ExecutionOptions,
    FundsPayload,
    JobKind,
    LoginPayload,
    new_job_request,
)
from opconsole.models.player import PlayerStep, PlayerStepType, check_step_fields
from opconsole.settings import Settings
from opconsole.worker.manager import JobQueue

router = APIRouter()

NonEmpty = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class ExecutionOverrides(BaseModel):
    """Optional per-request browser settings."""

    model_config = ConfigDict(populate_by_name=True)

    headless: bool | None = None
    debug: bool | None = None
    slow_mo: int | None = Field(None, alias="slowMo", ge=0)
    timeout_ms: int | None = Field(None, alias="timeoutMs", ge=1)


class LoginBody(ExecutionOverrides):
    username: Annotated[str, StringConstraints(min_length=1)]
    password: Annotated[str, StringConstraints(min_length=1)]


class StepActionBody(BaseModel):
    """One step of a create-player ``stepsOverride`` list."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["goto", "click", "fill", "waitFor"]
    selector: str | None = None
    value: str | None = None
    url: str | None = None
    timeout_ms: int | None = Field(None, alias="timeoutMs", ge=1)
    screenshot_name: str | None = Field(None, alias="screenshotName")

    @property
    def step_type(self) -> PlayerStepType:
        return PlayerStepType.WAIT_FOR if self.type == "waitFor" else PlayerStepType(self.type)

    @model_validator(mode="after")
    def _check_fields(self) -> "StepActionBody":
        check_step_fields(self.step_type, selector=self.selector, value=self.value, url=self.url)
        return self

    def to_step(self) -> PlayerStep:
        return PlayerStep(
            type=self.step_type,
            selector=self.selector,
            value=self.value,
            url=self.url,
            timeout_ms=self.timeout_ms,
            name=self.screenshot_name,
        )


class CreatePlayerBody(ExecutionOverrides):
    login_username: Annotated[str, StringConstraints(min_length=1)] = Field(alias="loginUsername")
    login_password: Annotated[str, StringConstraints(min_length=1)] = Field(alias="loginPassword")
    new_username: Annotated[str, StringConstraints(min_length=1)] = Field(alias="newUsername")
    new_password: Annotated[str, StringConstraints(min_length=1)] = Field(alias="newPassword")
    steps_override: list[StepActionBody] | None = Field(None, alias="stepsOverride")


class FundsBody(ExecutionOverrides):
    """``POST /users/deposit`` body. ``operacion`` selects the job kind."""

    operacion: JobKind
    usuario: NonEmpty
    agente: NonEmpty
    contrasena_agente: NonEmpty
    cantidad: int | None = Field(None, validate_default=True)

    @field_validator("operacion", mode="before")
    @classmethod
    def _normalize_operation(cls, value: Any) -> JobKind:
        if not isinstance(value, str):
            raise ValidationFailure(f"operacion must be one of: {', '.join(ACCEPTED_OPERATIONS)}")
        return require_funds_operation(value)

    @field_validator("cantidad")
    @classmethod
    def _amount_for_operation(cls, value: int | None, info: ValidationInfo) -> int | None:
        kind = info.data.get("operacion")
        if kind in (JobKind.DEPOSIT, JobKind.WITHDRAWAL):
            if value is None:
                raise ValueError("cantidad is required for carga and descarga")
            if value <= 0:
                raise ValueError("cantidad must be a positive integer")
            return value
        return None


class JobAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(serialization_alias="jobId")
    status: str = "queued"
    status_url: str = Field(serialization_alias="statusUrl")


# ---------------------------------------------------------------------------
# Dependencies and helpers
# ---------------------------------------------------------------------------


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def resolve_options(settings: Settings, body: ExecutionOverrides) -> ExecutionOptions:
    """Fill unset overrides from the browser settings."""
    return ExecutionOptions(
        headless=settings.browser.headless if body.headless is None else body.headless,
        debug_tracing=settings.browser.debug if body.debug is None else body.debug,
        action_delay_ms=settings.browser.action_delay_ms if body.slow_mo is None else body.slow_mo,
        timeout_ms=settings.browser.timeout_ms if body.timeout_ms is None else body.timeout_ms,
    )


def resolve_funds_options(settings: Settings, body: ExecutionOverrides) -> ExecutionOptions:
    """Funds jobs default to the fast profile: headed, no tracing, no delay, short timeout."""
    turbo_timeout = min(settings.browser.timeout_ms, settings.funds.turbo_timeout_ms)
    return ExecutionOptions(
        headless=False if body.headless is None else body.headless,
        debug_tracing=False if body.debug is None else body.debug,
        action_delay_ms=0 if body.slow_mo is None else body.slow_mo,
        timeout_ms=turbo_timeout if body.timeout_ms is None else body.timeout_ms,
    )


def _accepted(job_id: str) -> JSONResponse:
    body = JobAccepted(job_id=job_id, status_url=f"/jobs/{job_id}")
    return JSONResponse(status_code=202, content=body.model_dump(by_alias=True))


QueueDep = Annotated[JobQueue, Depends(get_job_queue)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/login", status_code=202)
async def submit_login(body: LoginBody, queue: QueueDep, settings: SettingsDep) -> JSONResponse:
    """Queue an agent login."""
    request = new_job_request(
        JobKind.LOGIN,
        LoginPayload(username=body.username, password=body.password),
        resolve_options(settings, body),
    )
    return _accepted(queue.enqueue(request))


@router.post("/users/create-player", status_code=202)
async def submit_create_player(body: CreatePlayerBody, queue: QueueDep, settings: SettingsDep) -> JSONResponse:
    """Queue a player creation."""
    steps = tuple(step.to_step() for step in body.steps_override) if body.steps_override else None
    payload = CreatePlayerPayload(
        login_username=body.login_username,
        login_password=body.login_password,
        new_username=body.new_username,
        new_password=body.new_password,
        steps_override=steps,
    )
    return _accepted(queue.enqueue(new_job_request(JobKind.CREATE_PLAYER, payload, resolve_options(settings, body))))


@router.post("/users/deposit", status_code=202)
async def submit_funds(body: FundsBody, queue: QueueDep, settings: SettingsDep) -> JSONResponse:
    """Queue a deposit, withdrawal, full withdrawal or balance query."""
    options = resolve_funds_options(settings, body)
    if body.operacion == JobKind.BALANCE:
        payload: BalancePayload | FundsPayload = BalancePayload(
            target_user=body.usuario, agent=body.agente, agent_password=body.contrasena_agente
        )
    else:
        payload = FundsPayload(
            operation=body.operacion.funds_operation,
            target_user=body.usuario,
            agent=body.agente,
            agent_password=body.contrasena_agente,
            amount=body.cantidad,
        )
    return _accepted(queue.enqueue(new_job_request(body.operacion, payload, options)))


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, queue: QueueDep) -> JSONResponse:
    """Return the job record, or 404 once it is unknown."""
    record = queue.get_by_id(job_id)
    if record is None:
        return JSONResponse(status_code=404, content={"message": "Job not found"})
    return JSONResponse(content=record.model_dump(mode="json"))
