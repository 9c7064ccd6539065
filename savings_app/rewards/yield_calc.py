"""Yield calculation for plan executions."""

from ..config.defaults import BASIS_POINTS, SECONDS_PER_YEAR
from ..errors import InvalidParameters


def calculate_yield(amount: int, rate_bps: int, interval_seconds: int) -> int:
    """
    Reward minted for one execution of a plan.

    ``floor(amount * rate_bps * interval / (seconds_per_year * 10000))``.
    Integer division throughout; the rounding loss accumulated over many
    short intervals is an accepted approximation.

    Args:
        amount: Quantity saved per interval, in token base units
        rate_bps: Annualized yield rate in basis points
        interval_seconds: Plan interval

    Returns:
        Reward amount in reward-token base units
    """
    for name, value in (("amount", amount), ("rate_bps", rate_bps),
                        ("interval_seconds", interval_seconds)):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise InvalidParameters(
                f"{name} must be a non-negative integer",
                field=name,
                value=value,
            )

    return (amount * rate_bps * interval_seconds) // (SECONDS_PER_YEAR * BASIS_POINTS)


def annual_rate_percent(rate_bps: int) -> float:
    """Basis points as a percentage, for reporting."""
    return rate_bps / 100
