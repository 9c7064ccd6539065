"""Relayer execution fee calculation."""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..config.defaults import BASIS_POINTS
from ..errors import InvalidParameters

if TYPE_CHECKING:
    from ..ledger.models import FeePolicy


@dataclass(frozen=True)
class FeeQuote:
    """Fee computed for one execution.

    ``fee`` is always reported. ``collectible`` says whether the ledger can
    actually take it: only when the fee is denominated in the plan's token and
    does not exceed the amount being saved.
    """
    fee: int
    collectible: bool

    @property
    def collected(self) -> int:
        return self.fee if self.collectible else 0


def calculate_execution_fee(amount: int, fee_policy: "FeePolicy", plan_token: str) -> FeeQuote:
    """
    Compute the execution fee for a plan under the global fee policy.

    Args:
        amount: Plan amount per interval
        fee_policy: Current fee policy
        plan_token: Token the plan saves

    Returns:
        FeeQuote with the reported fee and whether it is collectible
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0:
        raise InvalidParameters("amount must be a non-negative integer",
                                field="amount", value=amount)

    if fee_policy is None or not fee_policy.active:
        return FeeQuote(fee=0, collectible=False)

    same_token = fee_policy.fee_token.lower() == plan_token.lower()

    fee = fee_policy.base_fee
    if same_token and fee_policy.percent_fee_bps > 0:
        fee += (amount * fee_policy.percent_fee_bps) // BASIS_POINTS

    return FeeQuote(fee=fee, collectible=same_token and fee <= amount)
