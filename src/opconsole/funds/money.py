"""Text and money normalization for values scraped from the operator console.

The console renders amounts in Spanish/LATAM notation (``1.234,56``) but
free-form totals occasionally use a dot as the decimal point, so the parser
accepts both conventions and lets callers pick how a lone dot is read.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Literal

from opconsole.exceptions import MoneyParseError

logger = logging.getLogger(__name__)

DotGrouping = Literal["thousands", "decimal"]

DEFAULT_TOLERANCE = 0.005

_WHITESPACE_RE = re.compile(r"\s+")
_NON_MONEY_RE = re.compile(r"[^0-9,.\-]")
_DIGIT_RE = re.compile(r"[0-9]")

# First money-looking token in a users-listing row: 1.234,56 | 12,00 | 12.345
BALANCE_TOKEN_RE = re.compile(
    r"-?\d{1,3}(?:\.\d{3})*(?:,\d{2})|-?\d+(?:,\d{2})|-?\d{1,3}(?:\.\d{3})+"
)


def normalize_text(value: str) -> str:
    """Fold *value* for comparisons: strip accents, lowercase, collapse spaces.

    >>> normalize_text("  Depósito   Rápido ")
    'deposito rapido'
    """
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WHITESPACE_RE.sub(" ", stripped.lower()).strip()


def parse_localized_money(raw: str, *, dot_grouping: DotGrouping = "thousands") -> float:
    """Parse a localized money string into a float.

    Rules:

    * Everything except digits, ``,``, ``.`` and ``-`` is discarded.
    * Both separators present: the right-most one is the decimal separator.
    * Only commas: the last comma is the decimal separator.
    * Only dots with ``dot_grouping="thousands"``: dots group thousands,
      unless the number ends in a group of at most two digits (``12.5``,
      ``1.234.56``), which is read as decimals.
    * Only dots with ``dot_grouping="decimal"``: a single dot is the decimal
      point.

    Args:
        raw: Text as rendered by the console, e.g. ``"$ 1.234,56"``.
        dot_grouping: How to read a string whose only separator is ``.``.

    Returns:
        The parsed amount. A leading ``-`` keeps the sign.

    Raises:
        MoneyParseError: If *raw* contains no digit or does not form a number.
    """
    compact = _NON_MONEY_RE.sub("", _WHITESPACE_RE.sub("", raw.strip()))
    if not _DIGIT_RE.search(compact):
        raise MoneyParseError(f'Could not parse money value "{raw}"')

    sign = "-" if compact.startswith("-") else ""
    unsigned = compact.replace("-", "")

    if "," in unsigned and "." in unsigned:
        if unsigned.rfind(",") > unsigned.rfind("."):
            normalized = unsigned.replace(".", "").replace(",", ".")
        else:
            normalized = unsigned.replace(",", "")
    elif "," in unsigned:
        integer_part, _, decimal_part = unsigned.rpartition(",")
        normalized = f"{integer_part.replace(',', '') or '0'}.{decimal_part}"
    elif "." in unsigned and dot_grouping == "thousands":
        parts = unsigned.split(".")
        last = parts[-1]
        if len(last) <= 2:
            normalized = f"{''.join(parts[:-1]) or '0'}.{last}"
        else:
            normalized = "".join(parts)
    else:
        normalized = unsigned

    try:
        return float(f"{sign}{normalized}")
    except ValueError as exc:
        raise MoneyParseError(f'Could not parse money value "{raw}"') from exc


def extract_balance_text(row_text: str) -> str:
    """Return the first money token found in a users-listing row.

    Raises:
        MoneyParseError: If the row carries no money-shaped token.
    """
    match = BALANCE_TOKEN_RE.search(row_text)
    if match is None:
        raise MoneyParseError("Could not extract balance token from user row")
    return match.group(0).strip()


def extract_row_balance(row_text: str) -> float:
    """Parse the balance shown in a users-listing row."""
    return parse_localized_money(extract_balance_text(row_text))


def balances_match(actual: float, expected: float, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """Return ``True`` when *actual* is within *tolerance* of *expected*."""
    return abs(actual - expected) < tolerance
