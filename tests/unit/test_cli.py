"""CLI smoke tests with typer's runner."""

from __future__ import annotations

import json

from typer.testing import CliRunner

from opconsole.cli.app import VERSION, app
from opconsole.cli.settings_cmd import _redact

runner = CliRunner()


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.strip() == f"opconsole {VERSION}"


def test_settings_validate() -> None:
    result = runner.invoke(app, ["settings", "validate"])
    assert result.exit_code == 0
    assert "Environment: test" in result.output


def test_settings_show_is_json() -> None:
    result = runner.invoke(app, ["settings", "show"])
    assert result.exit_code == 0
    assert json.loads(result.output)["env"] == "test"


def test_redact_nested_secrets() -> None:
    data = {"agent_password": "x", "nested": [{"api_token": "t", "port": 3000}], "empty_secret": ""}
    assert _redact(data) == {"agent_password": "***", "nested": [{"api_token": "***", "port": 3000}], "empty_secret": ""}


def test_funds_rejects_unknown_operation() -> None:
    result = runner.invoke(
        app,
        ["job", "funds", "-o", "transferir", "-u", "pruebita", "-a", "agent01", "--agent-password", "x"],
    )
    assert result.exit_code == 2
    assert "operacion must be one of" in result.output


def test_funds_requires_amount_for_deposit() -> None:
    result = runner.invoke(
        app,
        ["job", "funds", "-o", "carga", "-u", "pruebita", "-a", "agent01", "--agent-password", "x"],
    )
    assert result.exit_code == 2
    assert "amount is required" in result.output
