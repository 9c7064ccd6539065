"""Fee and yield calculation for plan executions"""

from .calculator import ExecutionQuote, RewardCalculator
from .fees import FeeQuote, calculate_execution_fee
from .yield_calc import annual_rate_percent, calculate_yield

__all__ = [
    "RewardCalculator",
    "ExecutionQuote",
    "FeeQuote",
    "calculate_yield",
    "calculate_execution_fee",
    "annual_rate_percent",
]
