"""
Taker fee curve for 15-minute crypto up/down markets.

    fee = shares * price * 0.25 * (price * (1 - price))^2

Typical effective rates: 1.56% at 50c, 1.10% at 30c, 0.64% at 80c.
"""

FEE_COEFFICIENT = 0.25


def calculate_taker_fee(shares: float, price: float) -> float:
    """
    Fee in USD for a taker fill.

    Args:
        shares: Number of shares
        price: Price per share (0-1)

    Returns:
        Fee in USD
    """
    fee_multiplier = FEE_COEFFICIENT * (price * (1.0 - price)) ** 2
    return shares * price * fee_multiplier


def effective_fee_rate(price: float) -> float:
    """Fee as a fraction of notional at a given price."""
    return FEE_COEFFICIENT * (price * (1.0 - price)) ** 2
