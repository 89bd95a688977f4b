"""Unit tests for layered settings."""

from __future__ import annotations

from pathlib import Path

from opconsole.settings import Settings, get_settings
from opconsole.settings.config import PROJECT_ROOT


def test_test_profile_overrides_defaults() -> None:
    settings = Settings()
    assert settings.env == "test"
    assert settings.browser.headless is True
    assert settings.pool.enabled is False
    assert settings.jobs.concurrency == 3
    assert settings.funds.reconcile_tolerance == 0.005


def test_artifacts_dir_is_absolute() -> None:
    settings = Settings()
    assert settings.artifacts_dir.is_absolute()
    assert settings.artifacts_dir == PROJECT_ROOT / "artifacts" / "test"
    assert settings.storage_state_path == settings.artifacts_dir / "storage-state.json"


def test_env_vars_override_toml(monkeypatch) -> None:
    monkeypatch.setenv("OPC_JOBS__CONCURRENCY", "5")
    monkeypatch.setenv("OPC_BROWSER__TIMEOUT_MS", "9000")
    settings = Settings()
    assert settings.jobs.concurrency == 5
    assert settings.browser.timeout_ms == 9000
    assert settings.browser.headless is True


def test_base_url_trailing_slash_stripped(monkeypatch) -> None:
    monkeypatch.setenv("OPC_SITE__BASE_URL", "https://console.example.test/")
    assert Settings().site.base_url == "https://console.example.test"


def test_absolute_artifacts_dir_kept(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("OPC_ARTIFACTS__DIR", str(tmp_path))
    assert Settings().artifacts_dir == tmp_path


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()
