"""CLI commands for inspecting and validating opconsole settings."""

from __future__ import annotations

import json

import typer
from rich.console import Console

settings_app = typer.Typer(help="Inspect and validate opconsole configuration.")
console = Console()

_SECRET_KEYS = ("password", "secret", "token")


def _redact(data: object) -> object:
    if isinstance(data, dict):
        return {
            key: "***" if any(s in key.lower() for s in _SECRET_KEYS) and isinstance(value, str) and value else _redact(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_redact(item) for item in data]
    return data


@settings_app.command("show")
def show_settings() -> None:
    """Display the currently resolved settings."""
    from opconsole.settings import get_settings

    settings = get_settings()
    console.print_json(json.dumps(_redact(settings.model_dump(mode="json")), indent=2, default=str))


@settings_app.command("validate")
def validate_settings() -> None:
    """Validate settings and report any issues."""
    from opconsole.settings import get_settings

    try:
        settings = get_settings()
        console.print("[green]✓[/green] Settings are valid.")
        console.print(f"  Environment: {settings.env}")
        console.print(f"  Console URL: {settings.site.base_url}")
        console.print(f"  Artifacts dir: {settings.artifacts_dir}")
    except Exception as e:
        console.print(f"[red]✗[/red] Settings validation failed: {e}")
        raise typer.Exit(code=1)
