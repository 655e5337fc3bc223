"""Amount conversion between decimal amounts and processor minor units."""

from decimal import ROUND_HALF_UP, Decimal

# ISO 4217 currencies without a minor unit, as documented by Stripe
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)


def is_zero_decimal(currency: str) -> bool:
    return currency.upper() in ZERO_DECIMAL_CURRENCIES


def to_minor_units(amount: Decimal, currency: str) -> int:
    """
    Convert a decimal amount into the integer unit processors charge in.

    CLP 10000 stays 10000, USD 12.99 becomes 1299.
    """
    amount = Decimal(str(amount))
    if not is_zero_decimal(currency):
        amount = amount * 100
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: int, currency: str) -> Decimal:
    if is_zero_decimal(currency):
        return Decimal(value)
    return Decimal(value) / Decimal(100)
