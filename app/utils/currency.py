"""Money helpers: Decimal coercion and conversion to integer minor units."""
from decimal import ROUND_HALF_UP, Decimal


def to_decimal(value) -> Decimal:
    """Coerce int/float/str/Decimal to Decimal without binary float noise."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_minor_units(amount) -> int:
    """Round to the nearest cent (half-up) and return integer cents: 150.456 -> 15046."""
    cents = (to_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def format_amount(amount, currency: str = "usd") -> str:
    """Format for messages: "$14.00" for USD, "14.00 EUR" otherwise."""
    value = to_decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if currency.lower() == "usd":
        return f"${value}"
    return f"{value} {currency.upper()}"
