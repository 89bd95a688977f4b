"""opconsole-specific exception hierarchy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from opconsole.models.steps import StepResult


class OpConsoleError(Exception):
    """Base exception for all opconsole-specific errors."""


class ValidationFailure(OpConsoleError, ValueError):
    """Raised when a job request is malformed and must not be scheduled."""


class MoneyParseError(OpConsoleError, ValueError):
    """Raised when a localized money string contains no parseable number."""


class AuthenticationError(OpConsoleError):
    """Raised when the operator console rejects or never confirms a login.

    Attributes:
        retryable: ``False`` when the on-page text identified a credential
            rejection. Retrying those wastes a slot and risks lockout.
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)


class StepError(OpConsoleError):
    """Raised when a named state-machine step could not complete.

    Attributes:
        step: The failed ``StepResult`` already appended to the history.
    """

    def __init__(self, step: StepResult) -> None:
        self.step = step
        super().__init__(f"Step failed: {step.name} ({step.error or 'unknown error'})")


class AmbiguityError(OpConsoleError):
    """Raised when a target identity does not resolve to exactly one row."""

    def __init__(self, message: str, *, target: str, matches: int) -> None:
        self.target = target
        self.matches = matches
        super().__init__(message)


class RowNotFoundError(AmbiguityError):
    """No actionable row carries an exact match for the target identity."""


class AmbiguousRowError(AmbiguityError):
    """More than one actionable row carries an exact match."""


class ReconciliationInconclusiveError(OpConsoleError):
    """Raised when neither UI feedback nor the balance delta confirms an operation.

    The message is always the original inconclusive verification reason.
    """

    def __init__(
        self,
        reason: str,
        *,
        expected_balance: float | None = None,
        observed_balance: float | None = None,
    ) -> None:
        self.reason = reason
        self.expected_balance = expected_balance
        self.observed_balance = observed_balance
        super().__init__(reason)


class ResourceError(OpConsoleError):
    """Raised when a browser session cannot be acquired from the pool."""
