"""Funds-operation data models.

Ephemeral values used while a deposit, withdrawal or balance query runs:
row candidates handed to the row disambiguator, the pre-operation
snapshot consumed by balance reconciliation, and the typed verification
outcome.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class FundsOperation(str, Enum):
    """Money-moving operations supported by the state machine."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    WITHDRAWAL_FULL = "withdrawal-full"

    @property
    def is_withdrawal(self) -> bool:
        return self in (FundsOperation.WITHDRAWAL, FundsOperation.WITHDRAWAL_FULL)

    @property
    def requires_amount(self) -> bool:
        return self != FundsOperation.WITHDRAWAL_FULL


class RowCandidate(BaseModel):
    """One visible row of the users listing, as seen by the disambiguator."""

    index: int
    has_action: bool
    identities: list[str] = Field(default_factory=list)
    row_text: str = ""


class FundsOutcomeSnapshot(BaseModel):
    """Pre-operation facts captured while locating the target row.

    Both fields are best-effort: a ``None`` balance disables the
    reconciliation fallback, a ``None`` id forces the row-action click path.
    """

    balance_before: float | None = None
    resolved_target_id: str | None = None


class VerifyState(str, Enum):
    """Classification of the post-submit UI feedback."""

    SUCCESS = "success"
    ERROR = "error"
    UNKNOWN = "unknown"


class VerifyOutcome(BaseModel):
    """Result of polling the operation page after a submit."""

    state: VerifyState
    reason: str


class BalanceResult(BaseModel):
    """Balance read from the users listing for a single player."""

    target_user: str
    balance_text: str
    balance: float
