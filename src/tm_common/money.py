"""Integer arithmetic utilities for minor-unit amounts.

All prices, bids, offers and fees are int amounts in the listing currency's
minor unit (cents for USD/USDC, lamports for SOL, gwei for ETH).
Rates are int basis points: 10000 bps == 100%.
"""

from decimal import Decimal, InvalidOperation

BPS_DENOMINATOR = 10_000

CURRENCY_DECIMALS: dict[str, int] = {
    "USD": 2,
    "USDC": 2,
    "SOL": 9,
    "ETH": 9,
}


def div_round_half_even(numerator: int, denominator: int) -> int:
    """Integer division rounded to nearest, ties to even (banker's rounding)."""
    if denominator <= 0:
        raise ValueError(f"denominator must be positive, got {denominator}")
    quotient, remainder = divmod(numerator, denominator)
    twice = remainder * 2
    if twice > denominator or (twice == denominator and quotient % 2 == 1):
        quotient += 1
    return quotient


def percent_to_bps(percent: str | int | float | Decimal) -> int:
    """Convert a percentage ("2.5", 5, Decimal("0.25")) to basis points exactly.

    Floats go through str() so 2.5 -> "2.5" rather than its binary expansion.
    Raises ValueError for values finer than one basis point.
    """
    try:
        value = Decimal(str(percent)) * 100
    except InvalidOperation as exc:
        raise ValueError(f"Not a percentage: {percent!r}") from exc
    if value != value.to_integral_value():
        raise ValueError(f"Percentage {percent} is finer than one basis point")
    return int(value)


def format_amount(amount: int, currency: str) -> str:
    """Render a minor-unit amount: (4625, "USD") -> '46.25 USD'."""
    decimals = CURRENCY_DECIMALS.get(currency, 2)
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10**decimals)
    if decimals == 0:
        return f"{sign}{whole:,} {currency}"
    return f"{sign}{whole:,}.{frac:0{decimals}d} {currency}"
