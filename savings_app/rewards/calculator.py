"""Reward calculator combining yield and fee for a single execution"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .fees import calculate_execution_fee
from .yield_calc import calculate_yield

if TYPE_CHECKING:
    from ..ledger.models import FeePolicy, Plan, TokenPolicy


@dataclass(frozen=True)
class ExecutionQuote:
    """Amounts moved by one plan execution."""
    amount: int                 # Debited from the owner
    yield_amount: int           # Minted to the owner
    fee: int                    # Reported fee, collected or not
    fee_collected: bool         # Fee credited to the relayer
    amount_saved: int           # Credited to the owner's savings

    @property
    def collected_fee(self) -> int:
        return self.fee if self.fee_collected else 0


class RewardCalculator:
    """
    Stateless calculator producing the execution quote for a plan.
    """

    def quote_execution(
        self,
        plan: "Plan",
        token_policy: "TokenPolicy",
        fee_policy: Optional["FeePolicy"]
    ) -> ExecutionQuote:
        """
        Quote one execution of a plan.

        Args:
            plan: Plan being executed
            token_policy: Policy of the plan's token
            fee_policy: Global fee policy, None when never configured

        Returns:
            ExecutionQuote for the ledger to apply
        """
        amount = plan.amount_per_interval
        yield_amount = calculate_yield(amount, token_policy.yield_rate_bps, plan.interval)
        fee_quote = calculate_execution_fee(amount, fee_policy, plan.token)

        return ExecutionQuote(
            amount=amount,
            yield_amount=yield_amount,
            fee=fee_quote.fee,
            fee_collected=fee_quote.collectible,
            amount_saved=amount - fee_quote.collected,
        )
