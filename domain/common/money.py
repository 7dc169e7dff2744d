"""
Fixed-point money in integer minor units (fen / cents).

Stored and transmitted values are always ints; `format_yuan` is a
presentation helper only.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from domain.common.exceptions import DomainValidationException


MINOR_PER_MAJOR = 100


def _require_int(value, field: str) -> int:
    # bool is an int subclass; reject it along with floats/Decimals
    if isinstance(value, bool) or not isinstance(value, int):
        raise DomainValidationException(
            f"{field} must be an integer amount in minor units: {value!r}",
            field=field,
        )
    return value


@dataclass(frozen=True, order=True)
class Money:
    minor: int
    currency: str = "CNY"

    def __post_init__(self):
        _require_int(self.minor, "amount")

    @classmethod
    def zero(cls, currency: str = "CNY") -> "Money":
        return cls(0, currency)

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise DomainValidationException(
                f"Currency mismatch: {self.currency} vs {other.currency}",
                field="currency",
            )

    def add(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.minor + other.minor, self.currency)

    def subtract(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(self.minor - other.minor, self.currency)

    def multiply(self, quantity: int) -> "Money":
        _require_int(quantity, "quantity")
        return Money(self.minor * quantity, self.currency)

    def is_negative(self) -> bool:
        return self.minor < 0

    def ensure_non_negative(self, field: str = "amount") -> "Money":
        """Raise if this amount is below zero where the domain forbids it."""
        if self.minor < 0:
            raise DomainValidationException(
                f"{field} must not be negative: {self.minor}",
                field=field,
            )
        return self

    def __add__(self, other: "Money") -> "Money":
        return self.add(other)

    def __sub__(self, other: "Money") -> "Money":
        return self.subtract(other)

    def __mul__(self, quantity: int) -> "Money":
        return self.multiply(quantity)

    def to_yuan(self) -> str:
        return format_yuan(self.minor)


def format_yuan(minor: int) -> str:
    """Render a minor-unit integer as a two-decimal major-unit string."""
    _require_int(minor, "amount")
    return str((Decimal(minor) / MINOR_PER_MAJOR).quantize(Decimal("0.01")))
