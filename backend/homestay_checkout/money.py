"""Money value type: amount plus currency, with the fixed NPR/USD conversion."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from homestay_checkout.config import settings

Currency = Literal["NPR", "USD"]

SUPPORTED_CURRENCIES: frozenset[str] = frozenset({"NPR", "USD"})


@dataclass(frozen=True)
class Money:
    """An immutable, non-negative amount in NPR or USD."""

    amount: Decimal
    currency: Currency = "NPR"

    def __post_init__(self) -> None:
        # frozen: normalize through object.__setattr__
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        if not self.amount.is_finite():
            raise ValueError("amount must be a finite number")
        if self.amount < 0:
            raise ValueError("amount must be >= 0")
        if self.currency not in SUPPORTED_CURRENCIES:
            raise ValueError(f"unsupported currency: {self.currency}")

    def to_usd(self, npr_per_usd: Decimal | None = None) -> "Money":
        """Return the USD value of this amount using the fixed published rate."""
        if self.currency == "USD":
            return self
        rate = npr_per_usd if npr_per_usd is not None else settings.npr_per_usd
        return Money(self.amount / rate, "USD")

    def to_minor_units(self) -> int:
        """Return the amount in cents/paisa, rounded half-up."""
        return int((self.amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def __str__(self) -> str:
        return f"{self.currency} {self.amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)}"


def convert_to_usd(money: Money, npr_per_usd: Decimal | None = None) -> Money:
    """Functional alias of :meth:`Money.to_usd`."""
    return money.to_usd(npr_per_usd)


def convert_to_minor_units(money: Money) -> int:
    """Functional alias of :meth:`Money.to_minor_units`."""
    return money.to_minor_units()
