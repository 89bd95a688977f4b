"""Configuration loader for opconsole using Pydantic settings.

Config precedence (highest wins):
  1. CLI flags / request fields (where applicable)
  2. Environment variables (OPC_* with __ for nesting)
  3. settings.local.toml
  4. settings.<env>.toml
  5. settings.default.toml
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = Path(os.getenv("OPC_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR_NAME = "OPC_ENV"
DEFAULT_ENV = "local"


def _resolve_env() -> str:
    return (os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()


def _load_toml(path: Path) -> dict[str, Any]:
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SiteSettings(BaseSettings):
    """Operator console location and login form selectors."""

    model_config = SettingsConfigDict(env_prefix="OPC_SITE__")

    base_url: str = "https://agents.reydeases.com"
    login_path: str = "/login"
    username_selectors: list[str] = Field(
        default_factory=lambda: [
            'input[name="username"]',
            'input[name="login"]',
            'input[autocomplete="username"]',
            'input[type="text"]',
        ]
    )
    password_selectors: list[str] = Field(
        default_factory=lambda: ['input[name="password"]', 'input[type="password"]']
    )
    submit_selectors: list[str] = Field(
        default_factory=lambda: [
            'button[type="submit"]',
            'button:has-text("Log in")',
            'button:has-text("Login")',
        ]
    )
    success_selector: str = ""
    error_selector: str = ""
    post_login_warmup_path: str = ""
    login_submit_delay_ms: int = 1_500
    auth_stable_window_ms: int = 500

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class BrowserSettings(BaseSettings):
    """Playwright browser defaults for jobs that do not override them."""

    model_config = SettingsConfigDict(env_prefix="OPC_BROWSER__")

    headless: bool = False
    debug: bool = False
    action_delay_ms: int = 0
    timeout_ms: int = 30_000
    block_resources: bool = True


class PoolSettings(BaseSettings):
    """Session pool configuration."""

    model_config = SettingsConfigDict(env_prefix="OPC_POOL__")

    enabled: bool = True
    ttl_sec: int = 600
    max_agents: int = 8


class JobSettings(BaseSettings):
    """Job manager configuration."""

    model_config = SettingsConfigDict(env_prefix="OPC_JOBS__")

    concurrency: int = Field(default=3, ge=1)
    ttl_minutes: int = Field(default=60, ge=1)
    sweep_interval_sec: int = Field(default=60, ge=1)


class FundsSettings(BaseSettings):
    """Deposit / withdrawal / balance tuning."""

    model_config = SettingsConfigDict(env_prefix="OPC_FUNDS__")

    turbo_timeout_ms: int = 15_000
    reconcile_tolerance: float = 0.005
    capture_success_artifacts: bool = False
    debug_close_delay_ms: int = 0


class ArtifactSettings(BaseSettings):
    """Screenshot, trace and storage-state output."""

    model_config = SettingsConfigDict(env_prefix="OPC_ARTIFACTS__")

    dir: str = "artifacts"
    storage_state_file: str = "storage-state.json"


class APISettings(BaseSettings):
    """API server configuration."""

    model_config = SettingsConfigDict(env_prefix="OPC_API__")

    host: str = "127.0.0.1"
    port: int = 3000


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root opconsole settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="OPC_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)
    log_level: str = "INFO"

    site: SiteSettings = Field(default_factory=SiteSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    pool: PoolSettings = Field(default_factory=PoolSettings)
    jobs: JobSettings = Field(default_factory=JobSettings)
    funds: FundsSettings = Field(default_factory=FundsSettings)
    artifacts: ArtifactSettings = Field(default_factory=ArtifactSettings)
    api: APISettings = Field(default_factory=APISettings)

    @model_validator(mode="before")
    @classmethod
    def _merge_toml_files(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Layer TOML config files before env var overrides."""
        defaults = _load_toml(CONFIG_DIR / "settings.default.toml")
        env_name = (values.get("env") or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()
        env_overrides = _load_toml(CONFIG_DIR / f"settings.{env_name}.toml")
        local_overrides = _load_toml(CONFIG_DIR / "settings.local.toml")

        merged: dict[str, Any] = {}
        for layer in (defaults, env_overrides, local_overrides, values):
            for key, val in layer.items():
                if isinstance(val, dict) and isinstance(merged.get(key), dict):
                    merged[key] = {**merged[key], **val}
                else:
                    merged[key] = val
        return merged

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize the artifacts directory against project_root."""
        if not Path(self.artifacts.dir).is_absolute():
            self.artifacts.dir = str(self.project_root / self.artifacts.dir)
        return self

    @property
    def artifacts_dir(self) -> Path:
        return Path(self.artifacts.dir)

    @property
    def storage_state_path(self) -> Path:
        return self.artifacts_dir / self.artifacts.storage_state_file


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
