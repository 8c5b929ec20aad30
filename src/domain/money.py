"""Fixed-point money value used for every cost field."""

from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator


ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "XAF", "XOF"})
DEFAULT_MINOR_UNIT_EXPONENT = 2


def minor_unit_exponent(currency: str) -> int:
    """Number of decimal places between major and minor units for a currency."""
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else DEFAULT_MINOR_UNIT_EXPONENT


class Money(BaseModel):
    """Non-negative amount in integer minor units plus an ISO-4217 currency code."""

    model_config = ConfigDict(frozen=True)

    amount: StrictInt = Field(..., ge=0, description="Amount in minor units (e.g. centimes)")
    currency: str = Field(..., min_length=3, max_length=3, description="ISO-4217 currency code")

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        if not value.isalpha():
            msg = f"Currency code must be alphabetic, got {value!r}"
            raise ValueError(msg)
        return value.upper()

    @classmethod
    def from_major(cls, value: str | int | Decimal, currency: str) -> "Money":
        """Build from a major-unit amount such as "15.00" or Decimal("15").

        Floats are refused; values that do not land on a whole minor unit raise ValueError.
        """
        if isinstance(value, float):
            msg = "Money cannot be built from a float; pass a str or Decimal"
            raise TypeError(msg)
        try:
            major = Decimal(value)
        except InvalidOperation as e:
            msg = f"Invalid money amount: {value!r}"
            raise ValueError(msg) from e
        if not major.is_finite():
            msg = f"Invalid money amount: {value!r}"
            raise ValueError(msg)

        minor = major.scaleb(minor_unit_exponent(currency))
        if minor != minor.to_integral_value():
            msg = f"{value!r} has more precision than {currency.upper()} minor units allow"
            raise ValueError(msg)
        return cls(amount=int(minor), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(amount=0, currency=currency)

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    def to_major(self) -> Decimal:
        """Major-unit Decimal, e.g. Money(1500, "DZD") -> Decimal("15.00")."""
        exponent = minor_unit_exponent(self.currency)
        return Decimal(self.amount).scaleb(-exponent).quantize(Decimal(1).scaleb(-exponent))

    def format(self) -> str:
        return f"{self.to_major()} {self.currency}"

    def _check_currency(self, other: "Money") -> None:
        if not isinstance(other, Money):
            msg = f"Cannot combine Money with {type(other).__name__}"
            raise TypeError(msg)
        if other.currency != self.currency:
            msg = f"Currency mismatch: {self.currency} vs {other.currency}"
            raise ValueError(msg)

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        # Negative results are rejected by the amount constraint
        return Money(amount=self.amount - other.amount, currency=self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return self.format()
