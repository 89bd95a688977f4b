"""Unified CLI entry point for opconsole.

Config precedence: settings.default.toml -> settings.<env>.toml -> settings.local.toml -> env vars (OPC_* with double underscores) -> CLI flags.
"""

from __future__ import annotations

from typing import Optional

import typer

from opconsole.cli.job import job_app
from opconsole.cli.settings_cmd import settings_app

try:
    from importlib.metadata import version

    VERSION = version("opconsole")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "opconsole: operator console automation. "
    "Runs login, player creation, deposits, withdrawals and balance queries through a browser. "
    "Config precedence: settings.default.toml -> settings.<env>.toml -> settings.local.toml -> env vars (OPC_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)

app.add_typer(job_app, name="job")
app.add_typer(settings_app, name="settings")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context, version: bool = typer.Option(False, "--version", help="Show version and exit.")) -> None:
    """Show help when no subcommand is provided."""
    if version:
        typer.echo(f"opconsole {VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: settings.api.host)."),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: settings.api.port)."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level override."),
) -> None:
    """Start the job API server."""
    import uvicorn

    from opconsole.logging_config import configure_logging
    from opconsole.settings import get_settings

    settings = get_settings()
    configure_logging(log_level)
    uvicorn.run(
        "opconsole.api.app:create_app",
        factory=True,
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_level=(log_level or settings.log_level).lower(),
    )


if __name__ == "__main__":
    app()
