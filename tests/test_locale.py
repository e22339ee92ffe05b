"""Tests for Spanish locale parsing and formatting."""

from datetime import date
from decimal import Decimal

import pytest

from loan_ocr.utils.locale import (
    format_date,
    format_differential,
    format_money,
    format_percentage,
    group_blocks,
    iban_checksum_valid,
    normalize_account,
    parse_date,
    parse_money,
    parse_percentage,
    parse_spanish_number,
    parse_term_months,
)


class TestParsing:
    """Tests for locale-aware parsing."""

    def test_spanish_number(self) -> None:
        assert parse_spanish_number("1.234,56") == Decimal("1234.56")
        assert parse_spanish_number("250 000") == Decimal("250000")
        assert parse_spanish_number("abc") is None

    def test_money_with_suffix(self) -> None:
        assert parse_money("250.000,00 €") == Decimal("250000.00")
        assert parse_money("Importe 1.263,45") == Decimal("1263.45")

    def test_money_without_figure(self) -> None:
        assert parse_money("sin importe") is None

    def test_percentage(self) -> None:
        assert parse_percentage("3,45 %") == Decimal("3.45")
        assert parse_percentage("2.5%") == Decimal("2.5")
        assert parse_percentage("-0,10 %") == Decimal("-0.10")

    def test_term_years_become_months(self) -> None:
        assert parse_term_months("25 años") == 300
        assert parse_term_months("30 anos") == 360

    def test_term_months(self) -> None:
        assert parse_term_months("180 meses") == 180
        assert parse_term_months("sin plazo") is None

    def test_dates(self) -> None:
        assert parse_date("15/03/2024") == date(2024, 3, 15)
        assert parse_date("2024-03-15") == date(2024, 3, 15)
        assert parse_date("31/02/2024") is None


class TestFormatting:
    """Tests for locale rendering."""

    def test_money(self) -> None:
        assert format_money(Decimal("250000")) == "250.000,00 €"
        assert format_money(Decimal("1251.555")) == "1.251,56 €"

    def test_percentage(self) -> None:
        assert format_percentage(Decimal("3.5")) == "3,50 %"

    def test_differential_carries_sign(self) -> None:
        assert format_differential(Decimal("0.99")) == "+0,99 %"
        assert format_differential(Decimal("-0.10")) == "-0,10 %"

    def test_date(self) -> None:
        assert format_date(date(2024, 4, 1)) == "01/04/2024"

    @pytest.mark.parametrize("amount", ["0.01", "999.99", "250000.00", "1234567.89"])
    def test_money_survives_format_and_parse(self, amount: str) -> None:
        value = Decimal(amount)
        assert parse_money(format_money(value)) == value


class TestAccounts:
    """Tests for IBAN checks and account grouping."""

    def test_group_blocks(self) -> None:
        assert group_blocks("ES9121000418") == "ES91 2100 0418"

    def test_valid_iban(self) -> None:
        assert iban_checksum_valid("ES91 2100 0418 4502 0005 1332")

    def test_invalid_iban(self) -> None:
        assert not iban_checksum_valid("ES00 2100 0418 4502 0005 1332")
        assert not iban_checksum_valid("ES")

    def test_normalize_full_iban(self) -> None:
        assert normalize_account("es9121000418450200051332") == "ES91 2100 0418 4502 0005 1332"

    def test_normalize_masked_account(self) -> None:
        assert normalize_account("ES12****1234") == "ES12 **** 1234"

    def test_normalize_rejects_other_text(self) -> None:
        assert normalize_account("cuenta corriente") is None
