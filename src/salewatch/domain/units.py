"""Fixed-point formatting of on-chain integer amounts."""

from decimal import Decimal, localcontext

WEI_DECIMALS = 18


def format_units(value: int, decimals: int = WEI_DECIMALS) -> str:
    """Render an integer amount with `decimals` fractional digits, trailing zeros stripped.

    format_units(2_500_000_000_000_000_000) == "2.5"
    format_units(10**18) == "1"
    """
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")

    # uint256 amounts exceed the default 28-digit context
    with localcontext(prec=len(str(abs(value))) + decimals + 1):
        qty = Decimal(str(value)) / Decimal(10) ** decimals
        return f"{qty.normalize():f}"
