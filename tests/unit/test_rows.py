"""Unit tests for users-listing row disambiguation."""

from __future__ import annotations

import pytest

from opconsole.exceptions import AmbiguityError, AmbiguousRowError, RowNotFoundError
from opconsole.funds.rows import has_exact_identity_match, select_row_index
from opconsole.models.funds import RowCandidate


def _row(index: int, *identities: str, has_action: bool = True, text: str = "") -> RowCandidate:
    return RowCandidate(index=index, has_action=has_action, identities=list(identities), row_text=text)


class TestExactIdentityMatch:
    def test_whole_token(self) -> None:
        assert has_exact_identity_match("Usuario: pruebita (Jugador)", "pruebita")

    def test_substring_is_not_a_match(self) -> None:
        assert not has_exact_identity_match("pruebita_2", "pruebita")
        assert not has_exact_identity_match("xpruebita", "pruebita")

    def test_case_and_accent_insensitive(self) -> None:
        assert has_exact_identity_match("JOSÉ99", "jose99")

    def test_empty_values(self) -> None:
        assert not has_exact_identity_match("", "pruebita")
        assert not has_exact_identity_match("pruebita", "  ")


class TestSelectRowIndex:
    def test_picks_unique_match(self) -> None:
        rows = [_row(0, "other_user"), _row(1, "pruebita")]
        assert select_row_index(rows, "pruebita") == 1

    def test_order_independent(self) -> None:
        rows = [_row(1, "pruebita"), _row(0, "other_user")]
        assert select_row_index(rows, "pruebita") == 1
        assert select_row_index(rows, "pruebita") == 1

    def test_substring_rows_ignored(self) -> None:
        rows = [_row(0, "pruebita_2"), _row(1, "pruebita")]
        assert select_row_index(rows, "pruebita") == 1

    def test_matches_row_text_when_identities_missing(self) -> None:
        rows = [_row(0, text="pruebita jugador 100,00"), _row(1, text="otro jugador")]
        assert select_row_index(rows, "pruebita") == 0

    def test_multiple_matches(self) -> None:
        rows = [_row(0, "pruebita"), _row(1, "Pruebita")]
        with pytest.raises(AmbiguousRowError, match="Multiple exact matches") as exc_info:
            select_row_index(rows, "pruebita")
        assert exc_info.value.matches == 2

    def test_no_match(self) -> None:
        with pytest.raises(RowNotFoundError, match="exact unique match"):
            select_row_index([_row(0, "pruebita_2")], "pruebita")

    def test_rows_without_action_are_skipped(self) -> None:
        rows = [_row(0, "pruebita", has_action=False), _row(1, "pruebita")]
        assert select_row_index(rows, "pruebita") == 1

    def test_no_actionable_rows(self) -> None:
        with pytest.raises(RowNotFoundError, match="No actionable rows"):
            select_row_index([_row(0, "pruebita", has_action=False)], "pruebita")

    def test_errors_share_base(self) -> None:
        with pytest.raises(AmbiguityError):
            select_row_index([], "pruebita")
