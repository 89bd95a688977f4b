"""Unit tests for funds operation aliases."""

from __future__ import annotations

import pytest

from opconsole.exceptions import ValidationFailure
from opconsole.funds.operation import ACCEPTED_OPERATIONS, normalize_funds_operation, require_funds_operation
from opconsole.models.funds import FundsOperation
from opconsole.models.job import JobKind


class TestNormalizeFundsOperation:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("carga", JobKind.DEPOSIT),
            ("descarga", JobKind.WITHDRAWAL),
            ("retiro", JobKind.WITHDRAWAL),
            ("descarga_total", JobKind.WITHDRAWAL_FULL),
            ("retiro_total", JobKind.WITHDRAWAL_FULL),
            ("consultar_saldo", JobKind.BALANCE),
            (" Consultar Saldo ", JobKind.BALANCE),
            ("CARGA", JobKind.DEPOSIT),
        ],
    )
    def test_aliases(self, value: str, expected: JobKind) -> None:
        assert normalize_funds_operation(value) == expected

    def test_unknown(self) -> None:
        assert normalize_funds_operation("transferencia") is None

    def test_accepted_list(self) -> None:
        assert "carga" in ACCEPTED_OPERATIONS
        assert "consultar_saldo" in ACCEPTED_OPERATIONS


class TestJobKindFundsOperation:
    def test_money_moving_kinds(self) -> None:
        assert JobKind.DEPOSIT.funds_operation == FundsOperation.DEPOSIT
        assert JobKind.WITHDRAWAL_FULL.funds_operation == FundsOperation.WITHDRAWAL_FULL

    def test_other_kinds(self) -> None:
        assert JobKind.BALANCE.funds_operation is None
        assert JobKind.LOGIN.funds_operation is None


def test_require_funds_operation_rejects_unknown() -> None:
    with pytest.raises(ValidationFailure, match="carga"):
        require_funds_operation("transferir")


def test_require_funds_operation_accepts_alias() -> None:
    assert require_funds_operation("Retiro Total") == JobKind.WITHDRAWAL_FULL
