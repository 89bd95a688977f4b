"""Row disambiguation for the users listing.

Given the visible rows after a filter, pick the single actionable row whose
identity matches the target exactly. Substring hits (``pruebita_2`` for
``pruebita``) never count, and more than one exact hit is an error rather
than a guess.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from opconsole.exceptions import AmbiguousRowError, RowNotFoundError
from opconsole.funds.money import normalize_text
from opconsole.models.funds import RowCandidate


def has_exact_identity_match(value: str, identity: str) -> bool:
    """Return ``True`` if *identity* occurs in *value* as a whole token.

    Both strings are normalized first. A token boundary is the start or end
    of the string or any character outside ``[a-z0-9_]``.
    """
    normalized_value = normalize_text(value)
    normalized_identity = normalize_text(identity)
    if not normalized_value or not normalized_identity:
        return False
    pattern = rf"(^|[^a-z0-9_]){re.escape(normalized_identity)}([^a-z0-9_]|$)"
    return re.search(pattern, normalized_value) is not None


def _matches(candidate: RowCandidate, target: str) -> bool:
    if any(has_exact_identity_match(identity, target) for identity in candidate.identities):
        return True
    return has_exact_identity_match(candidate.row_text, target)


def select_row_index(candidates: Iterable[RowCandidate], target: str) -> int:
    """Return the ``index`` of the unique actionable row matching *target*.

    Args:
        candidates: Rows collected from the listing, in any order.
        target: Player identity the operation is aimed at.

    Returns:
        The matching candidate's ``index``.

    Raises:
        RowNotFoundError: No actionable rows, or no exact match among them.
        AmbiguousRowError: More than one actionable row matches exactly.
    """
    actionable = [c for c in candidates if c.has_action]
    if not actionable:
        raise RowNotFoundError(
            f'No actionable rows found while searching for user "{target}"',
            target=target,
            matches=0,
        )

    exact = [c for c in actionable if _matches(c, target)]
    if len(exact) == 1:
        return exact[0].index
    if len(exact) > 1:
        raise AmbiguousRowError(
            f'Multiple exact matches found for user "{target}" ({len(exact)})',
            target=target,
            matches=len(exact),
        )
    raise RowNotFoundError(
        f'Could not find an exact unique match for user "{target}" in users list '
        f"(actionable rows: {len(actionable)}).",
        target=target,
        matches=0,
    )
