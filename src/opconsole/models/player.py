"""Create-player step models: scripted action sequences for the player form.

A create-player job runs an ordered list of ``PlayerStep`` actions after
logging in. Template variables (``{{new_username}}``, ``{{new_password}}``,
``{{login_username}}``, ``{{login_password}}``) in ``url`` and ``value`` are
resolved at runtime from the job payload.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class PlayerStepType(str, Enum):
    """Action types a create-player step can perform."""

    GOTO = "goto"
    CLICK = "click"
    FILL = "fill"
    WAIT_FOR = "wait_for"


def check_step_fields(step_type: PlayerStepType, *, selector: str | None, value: str | None, url: str | None) -> None:
    """Raise ``ValueError`` unless the fields required by *step_type* are set."""
    if step_type == PlayerStepType.GOTO and not url:
        raise ValueError("goto step requires url")
    if step_type != PlayerStepType.GOTO and not selector:
        raise ValueError(f"{step_type.value} step requires selector")
    if step_type == PlayerStepType.FILL and value is None:
        raise ValueError("fill step requires value")


class PlayerStep(BaseModel):
    """Single deterministic step of the create-player flow."""

    type: PlayerStepType
    selector: str | None = None
    value: str | None = None
    url: str | None = None
    timeout_ms: int | None = Field(default=None, ge=1)
    name: str | None = Field(
        default=None,
        description="Step name recorded in the history and used for the screenshot file.",
    )

    @model_validator(mode="after")
    def _check_required_fields(self) -> "PlayerStep":
        check_step_fields(self.type, selector=self.selector, value=self.value, url=self.url)
        return self

    def display_name(self, index: int) -> str:
        """Return the explicit name, or ``NN-<type>`` from the 0-based index."""
        return self.name or f"{index + 1:02d}-{self.type.value}"
