from decimal import Decimal

import pytest

from condoportal.utils.currency import currency_name, ensure_decimal, format_amount, format_currency, parse_currency


@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("25000"), "25 000,00"),
        (1234.5, "1234,50"),
        ("-1234567.891", "-1 234 567,89"),
        (0, "0,00"),
        ("abc", ""),
    ],
)
def test_format_amount(amount, expected):
    assert format_amount(amount) == expected


def test_format_currency_places_symbol_by_currency():
    assert format_currency(Decimal("25000")) == "25 000,00 Kz"
    assert format_currency(1500, "BRL") == "R$ 1500,00"
    assert format_currency(12, "EUR") == "12,00 €"
    assert format_currency(5, "USD") == "5,00 USD"
    assert format_currency(None) == ""


def test_parse_currency_reads_formatted_amounts():
    assert parse_currency("25 000,00 Kz") == Decimal("25000.00")
    assert parse_currency("R$ 1.234,56") == Decimal("1234.56")
    assert parse_currency("1500.75") == Decimal("1500.75")
    assert parse_currency("") == Decimal("0")
    assert parse_currency("sem valor") == Decimal("0")


def test_currency_name_falls_back_to_code():
    assert currency_name("AOA") == "Kwanza Angolano"
    assert currency_name("JPY") == "JPY"


def test_ensure_decimal_keeps_float_payloads_exact():
    amount = Decimal("10.10")
    assert ensure_decimal(amount) is amount
    assert ensure_decimal(10.1) == Decimal("10.1")
    assert ensure_decimal("25000.00") == Decimal("25000.00")
    assert ensure_decimal(None) == Decimal("0")
