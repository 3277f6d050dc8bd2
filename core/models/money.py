"""Money and Weight value types.

Amounts are Decimal, fixed to 2 fractional digits with banker's rounding.
Both types are immutable; arithmetic returns new instances.
"""

from decimal import Decimal, ROUND_HALF_EVEN
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from core.exceptions import CurrencyMismatchError, FeeValidationError

CENTS = Decimal("0.01")
KG_TO_LBS = Decimal("2.20462")


def round_amount(value) -> Decimal:
    """Round to 2 fractional digits, half to even."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_EVEN)


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)):
        return Decimal(str(value))
    raise FeeValidationError(f"Expected a number, got {type(value).__name__}")


class Currency(str, Enum):
    """Supported currencies. No conversion between them."""

    USD = "USD"
    XCD = "XCD"


class Money(BaseModel):
    """
    Non-negative monetary amount in a single currency.

    Usage:
        fee = Money.usd("150") + Money.usd("10.50")   # USD 160.50
        fee * Decimal("2.5")                          # USD 401.25
        Money.usd(5) - Money.usd(10)                  # FeeValidationError
        Money.usd(5) + Money.xcd(5)                   # CurrencyMismatchError
    """

    amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    currency: Currency = Currency.USD

    model_config = {"frozen": True}

    @field_validator("amount")
    @classmethod
    def _round(cls, value: Decimal) -> Decimal:
        return round_amount(value)

    @classmethod
    def of(cls, amount, currency: Currency = Currency.USD) -> "Money":
        """Build Money, raising FeeValidationError for negative amounts."""
        amount = to_decimal(amount)
        if amount < 0:
            raise FeeValidationError(f"Amount cannot be negative: {amount}")
        return cls(amount=amount, currency=currency)

    @classmethod
    def usd(cls, amount) -> "Money":
        return cls.of(amount, Currency.USD)

    @classmethod
    def xcd(cls, amount) -> "Money":
        return cls.of(amount, Currency.XCD)

    @classmethod
    def zero(cls, currency: Currency = Currency.USD) -> "Money":
        return cls(amount=Decimal("0.00"), currency=currency)

    @classmethod
    def total(cls, amounts, currency: Currency = Currency.USD) -> "Money":
        """Sum an iterable of Money. Empty iterable gives zero in `currency`."""
        result = cls.zero(currency)
        for amount in amounts:
            result = result + amount
        return result

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    def _require_same_currency(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise FeeValidationError(f"Expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency.value, other.currency.value)

    def __add__(self, other: "Money") -> "Money":
        self._require_same_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._require_same_currency(other)
        result = self.amount - other.amount
        if result < 0:
            raise FeeValidationError(
                f"Subtraction would produce a negative amount: {self} - {other}"
            )
        return Money(amount=result, currency=self.currency)

    def __mul__(self, factor) -> "Money":
        factor = to_decimal(factor)
        if factor < 0:
            raise FeeValidationError(f"Multiplier cannot be negative: {factor}")
        return Money(amount=self.amount * factor, currency=self.currency)

    __rmul__ = __mul__

    def __lt__(self, other: "Money") -> bool:
        self._require_same_currency(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._require_same_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._require_same_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._require_same_currency(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.currency.value} {self.amount:,.2f}"


class WeightUnit(str, Enum):
    KILOGRAMS = "kg"
    POUNDS = "lbs"


class Weight(BaseModel):
    """
    Non-negative mass in kilograms or pounds.

    Equality compares the kilogram value, so Weight.kilograms(100) equals
    Weight.pounds(220.46).
    """

    value: Decimal = Field(ge=0)
    unit: WeightUnit = WeightUnit.KILOGRAMS

    model_config = {"frozen": True}

    @field_validator("value")
    @classmethod
    def _round(cls, value: Decimal) -> Decimal:
        return round_amount(value)

    @classmethod
    def of(cls, value, unit: WeightUnit) -> "Weight":
        value = to_decimal(value)
        if value < 0:
            raise FeeValidationError(f"Weight cannot be negative: {value}")
        return cls(value=value, unit=unit)

    @classmethod
    def kilograms(cls, value) -> "Weight":
        return cls.of(value, WeightUnit.KILOGRAMS)

    @classmethod
    def pounds(cls, value) -> "Weight":
        return cls.of(value, WeightUnit.POUNDS)

    @property
    def in_kilograms(self) -> Decimal:
        if self.unit == WeightUnit.KILOGRAMS:
            return self.value
        return round_amount(self.value / KG_TO_LBS)

    @property
    def in_pounds(self) -> Decimal:
        if self.unit == WeightUnit.POUNDS:
            return self.value
        return round_amount(self.value * KG_TO_LBS)

    def to_kilograms(self) -> "Weight":
        return Weight(value=self.in_kilograms, unit=WeightUnit.KILOGRAMS)

    def to_pounds(self) -> "Weight":
        return Weight(value=self.in_pounds, unit=WeightUnit.POUNDS)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Weight):
            return NotImplemented
        return self.in_kilograms == other.in_kilograms

    def __hash__(self) -> int:
        return hash(self.in_kilograms)

    def __str__(self) -> str:
        return f"{self.value:,.2f} {self.unit.value}"
