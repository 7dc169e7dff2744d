import pytest

from domain.common.exceptions import DomainValidationException
from domain.common.money import Money, format_yuan


def test_add_and_multiply_stay_in_minor_units():
    total = Money(1000).multiply(2) + Money(500) + Money(200)
    assert total == Money(2700)
    assert total.to_yuan() == "27.00"


@pytest.mark.parametrize("value", [1.5, True, "100"])
def test_non_integer_amounts_rejected(value):
    with pytest.raises(DomainValidationException):
        Money(value)


def test_currency_mismatch_rejected():
    with pytest.raises(DomainValidationException):
        Money(100, "CNY") + Money(100, "USD")


def test_ensure_non_negative():
    assert Money(0).ensure_non_negative().minor == 0
    with pytest.raises(DomainValidationException) as exc:
        (Money(100) - Money(300)).ensure_non_negative("total_amount")
    assert exc.value.field == "total_amount"


@pytest.mark.parametrize(
    "minor, text",
    [(0, "0.00"), (5, "0.05"), (2700, "27.00"), (123456, "1234.56"), (-150, "-1.50")],
)
def test_format_yuan(minor, text):
    assert format_yuan(minor) == text
