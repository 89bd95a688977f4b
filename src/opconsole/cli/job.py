"""CLI commands for running a single console job in-process."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from opconsole.models.job import (
    BalancePayload,
    CreatePlayerPayload,
    ExecutionFailure,
    ExecutionOptions,
    ExecutionResult,
    FundsPayload,
    JobKind,
    JobRequest,
    LoginPayload,
    new_job_request,
)

job_app = typer.Typer(help="Run one job without the API server.")
console = Console()


def _options(headless: Optional[bool], debug: Optional[bool], slow_mo: Optional[int], timeout_ms: Optional[int]) -> ExecutionOptions:
    from opconsole.settings import get_settings

    browser = get_settings().browser
    return ExecutionOptions(
        headless=browser.headless if headless is None else headless,
        debug_tracing=browser.debug if debug is None else debug,
        action_delay_ms=browser.action_delay_ms if slow_mo is None else slow_mo,
        timeout_ms=browser.timeout_ms if timeout_ms is None else timeout_ms,
    )


async def _execute(request: JobRequest, storage_state_path: Path | None = None) -> ExecutionResult:
    from opconsole.settings import get_settings
    from opconsole.worker.executors import JobExecutor

    executor = JobExecutor(get_settings(), storage_state_path=storage_state_path)
    try:
        return await executor(request)
    finally:
        await executor.close()


def _run(request: JobRequest, storage_state_path: Path | None = None) -> None:
    from opconsole.logging_config import configure_logging

    configure_logging()
    outcome = asyncio.run(_execute(request, storage_state_path))

    steps = outcome.partial_steps if isinstance(outcome, ExecutionFailure) else outcome.steps
    table = Table(title=f"{request.kind.value} job {request.id}")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Detail")
    for step in steps:
        colour = "green" if step.ok else "red"
        table.add_row(step.name, f"[{colour}]{step.status.value}[/{colour}]", escape(step.error or step.artifact_ref or ""))
    console.print(table)

    if isinstance(outcome, ExecutionFailure):
        console.print(f"[red]Job failed:[/red] {escape(outcome.reason)}")
        raise typer.Exit(code=1)
    if outcome.result:
        console.print_json(json.dumps(outcome.result, default=str))
    console.print("[green]Job completed successfully.[/green]")


HeadlessOpt = typer.Option(None, "--headless/--headed", help="Run the browser headless or visible.")
DebugOpt = typer.Option(None, "--debug/--no-debug", help="Record a Playwright trace.")
SlowMoOpt = typer.Option(None, "--slow-mo", min=0, help="Delay between browser actions in ms.")
TimeoutOpt = typer.Option(None, "--timeout-ms", min=1, help="Per-step timeout in ms.")


@job_app.command("funds")
def job_funds(
    operation: str = typer.Option(..., "--operation", "-o", help="carga, descarga or descarga_total."),
    target: str = typer.Option(..., "--user", "-u", help="Player to act on."),
    agent: str = typer.Option(..., "--agent", "-a", help="Agent username.", envvar="OPC_JOB__AGENT"),
    agent_password: str = typer.Option(
        ..., "--agent-password", help="Agent password.", envvar="OPC_JOB__AGENT_PASSWORD", prompt=True, hide_input=True
    ),
    amount: Optional[int] = typer.Option(None, "--amount", min=1, help="Amount for carga/descarga."),
    headless: Optional[bool] = HeadlessOpt,
    debug: Optional[bool] = DebugOpt,
    slow_mo: Optional[int] = SlowMoOpt,
    timeout_ms: Optional[int] = TimeoutOpt,
) -> None:
    """Deposit into or withdraw from a player's account."""
    from opconsole.exceptions import ValidationFailure
    from opconsole.funds.operation import require_funds_operation

    try:
        kind = require_funds_operation(operation)
    except ValidationFailure as exc:
        console.print(f"[red]Invalid request:[/red] {escape(str(exc))}")
        raise typer.Exit(code=2)
    if kind.funds_operation is None:
        console.print("[red]Use `opconsole job balance` to read a balance.[/red]")
        raise typer.Exit(code=2)
    try:
        payload = FundsPayload(
            operation=kind.funds_operation,
            target_user=target,
            agent=agent,
            agent_password=agent_password,
            amount=amount if kind.funds_operation.requires_amount else None,
        )
    except ValueError as exc:
        console.print(f"[red]Invalid request:[/red] {escape(str(exc))}")
        raise typer.Exit(code=2)
    _run(new_job_request(kind, payload, _options(headless, debug, slow_mo, timeout_ms)))


@job_app.command("balance")
def job_balance(
    target: str = typer.Option(..., "--user", "-u", help="Player whose balance to read."),
    agent: str = typer.Option(..., "--agent", "-a", help="Agent username.", envvar="OPC_JOB__AGENT"),
    agent_password: str = typer.Option(
        ..., "--agent-password", help="Agent password.", envvar="OPC_JOB__AGENT_PASSWORD", prompt=True, hide_input=True
    ),
    headless: Optional[bool] = HeadlessOpt,
    debug: Optional[bool] = DebugOpt,
    slow_mo: Optional[int] = SlowMoOpt,
    timeout_ms: Optional[int] = TimeoutOpt,
) -> None:
    """Read a player's balance."""
    payload = BalancePayload(target_user=target, agent=agent, agent_password=agent_password)
    _run(new_job_request(JobKind.BALANCE, payload, _options(headless, debug, slow_mo, timeout_ms)))


@job_app.command("login")
def job_login(
    username: str = typer.Option(..., "--username", help="Agent username.", envvar="OPC_JOB__AGENT"),
    password: str = typer.Option(
        ..., "--password", help="Agent password.", envvar="OPC_JOB__AGENT_PASSWORD", prompt=True, hide_input=True
    ),
    save_session: bool = typer.Option(False, "--save-session", help="Write the storage state after login."),
    headless: Optional[bool] = HeadlessOpt,
    debug: Optional[bool] = DebugOpt,
    slow_mo: Optional[int] = SlowMoOpt,
    timeout_ms: Optional[int] = TimeoutOpt,
) -> None:
    """Log in once and capture a screenshot."""
    from opconsole.settings import get_settings

    storage_state_path = get_settings().storage_state_path if save_session else None
    payload = LoginPayload(username=username, password=password)
    _run(new_job_request(JobKind.LOGIN, payload, _options(headless, debug, slow_mo, timeout_ms)), storage_state_path)


@job_app.command("create-player")
def job_create_player(
    new_username: str = typer.Option(..., "--new-username", help="Username for the new player."),
    new_password: str = typer.Option(..., "--new-password", help="Password for the new player."),
    agent: str = typer.Option(..., "--agent", "-a", help="Agent username.", envvar="OPC_JOB__AGENT"),
    agent_password: str = typer.Option(
        ..., "--agent-password", help="Agent password.", envvar="OPC_JOB__AGENT_PASSWORD", prompt=True, hide_input=True
    ),
    headless: Optional[bool] = HeadlessOpt,
    debug: Optional[bool] = DebugOpt,
    slow_mo: Optional[int] = SlowMoOpt,
    timeout_ms: Optional[int] = TimeoutOpt,
) -> None:
    """Create a player account with the default form steps."""
    payload = CreatePlayerPayload(
        login_username=agent,
        login_password=agent_password,
        new_username=new_username,
        new_password=new_password,
    )
    _run(new_job_request(JobKind.CREATE_PLAYER, payload, _options(headless, debug, slow_mo, timeout_ms)))
