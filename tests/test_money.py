from decimal import Decimal

import pytest

from money import cents_to_decimal, decimal_to_cents, parse_money


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("10.50", Decimal("10.50")),
        ("-1.234,56", Decimal("-1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("R$ 10,00", Decimal("10.00")),
        ("(12.50)", Decimal("-12.50")),
        ("  7 ", Decimal("7.00")),
    ],
)
def test_parse_money(raw, expected):
    assert parse_money(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "abc", None])
def test_parse_money_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_money(raw)


def test_cents_conversion():
    assert decimal_to_cents(Decimal("123.45")) == 12345
    assert decimal_to_cents(Decimal("0.005")) == 1
    assert cents_to_decimal(12345) == Decimal("123.45")
    assert str(cents_to_decimal(0)) == "0.00"


def test_float_amounts_are_rejected():
    with pytest.raises(TypeError):
        decimal_to_cents(0.1)
