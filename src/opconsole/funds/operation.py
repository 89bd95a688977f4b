"""Spanish operation aliases accepted at the request boundary."""

from __future__ import annotations

import re

from opconsole.exceptions import ValidationFailure
from opconsole.models.job import JobKind

_ALIASES: dict[str, JobKind] = {
    "carga": JobKind.DEPOSIT,
    "descarga": JobKind.WITHDRAWAL,
    "retiro": JobKind.WITHDRAWAL,
    "descarga_total": JobKind.WITHDRAWAL_FULL,
    "retiro_total": JobKind.WITHDRAWAL_FULL,
    "consultar_saldo": JobKind.BALANCE,
    "saldo": JobKind.BALANCE,
}

ACCEPTED_OPERATIONS = tuple(_ALIASES)


def normalize_funds_operation(value: str) -> JobKind | None:
    """Map an ``operacion`` value to a job kind, or ``None`` if unknown.

    Input is trimmed, lowercased and inner whitespace becomes ``_``, so
    ``" Consultar Saldo "`` resolves to ``JobKind.BALANCE``.
    """
    normalized = re.sub(r"\s+", "_", value.strip().lower())
    return _ALIASES.get(normalized)


def require_funds_operation(value: str) -> JobKind:
    """Like :func:`normalize_funds_operation` but reject unknown values.

    Raises:
        ValidationFailure: *value* is not one of :data:`ACCEPTED_OPERATIONS`.
    """
    kind = normalize_funds_operation(value)
    if kind is None:
        raise ValidationFailure(f"operacion must be one of: {', '.join(ACCEPTED_OPERATIONS)}")
    return kind
