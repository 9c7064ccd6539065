"""
Plan ledger state machine.

The ledger owns plans, token and fee policy, relayer roles and relayer
credit. Every mutating operation runs inside one transaction scope:

* a re-entrant lock serializes operations, so no two mutations interleave;
* a guard flag rejects any nested mutating call made while another operation
  is in progress (for example from a token transfer hook);
* a snapshot of ledger and token state is restored if any error escapes, so
  an operation applies all of its effects or none of them.

Plan lifecycle: ACTIVE (executed any number of times, gated by the interval)
then CANCELLED, which is terminal.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional

from ..auth.artifacts import Authorization, PermitAuthorization, SubscriptionAuthorization
from ..auth.signing import TypedDataDomain, normalize_address
from ..auth.verifier import AuthorizationVerifier, NonceRegistry
from ..config.defaults import BASIS_POINTS, LedgerParams
from ..errors import (
    AuthorizationRejected,
    InsufficientSavings,
    InvalidParameters,
    LedgerError,
    NotActive,
    NothingToWithdraw,
    PlanInactive,
    PlanNotFound,
    PolicyVersionConflict,
    ReentrantCall,
    TokenDisabled,
    TooSoon,
    TransferRejected,
    Unauthorized,
    UnsupportedToken,
)
from ..logging.config import get_ledger_logger, log_state_transition
from ..rewards.calculator import ExecutionQuote, RewardCalculator
from .models import (
    FeePolicy,
    Notification,
    NotificationKind,
    Plan,
    PlanState,
    TokenPolicy,
    derive_plan_id,
)
from .tokens import FungibleToken, TokenOperationError, TokenRegistry

logger = get_ledger_logger(__name__)


@dataclass
class _TxContext:
    """Working state of one in-progress ledger operation."""
    operation: str
    height: int
    now: int
    notifications: list[Notification] = field(default_factory=list)

    def emit(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        self.notifications.append(Notification(
            kind=kind, height=self.height, timestamp=self.now, payload=payload
        ))


class PlanLedger:
    """Authoritative store of savings plans and the operations on them."""

    def __init__(
        self,
        admin: str,
        tokens: TokenRegistry,
        params: Optional[LedgerParams] = None,
        clock: Optional[Callable[[], int]] = None,
        calculator: Optional[RewardCalculator] = None
    ) -> None:
        self.params = params or LedgerParams()
        self.address = normalize_address(self.params.address)
        self.reward_token = normalize_address(self.params.reward_token)
        self.admin = normalize_address(admin)
        self.tokens = tokens
        self.clock = clock or (lambda: int(time.time()))
        self.calculator = calculator or RewardCalculator()

        self.domain = TypedDataDomain(
            self.params.name, self.params.version, self.params.chain_id, self.address
        )
        self.nonces = NonceRegistry()
        self.verifier = AuthorizationVerifier(self.domain, self._token_domain, self.nonces)

        self._plans: dict[str, Plan] = {}
        self._token_policies: dict[str, TokenPolicy] = {}
        self._fee_policy: Optional[FeePolicy] = None
        self._relayers: set[str] = set()
        self._relayer_credit: dict[tuple[str, str], int] = {}   # (relayer, token)
        self._savings: dict[tuple[str, str], int] = {}          # (owner, token)
        self._notifications: list[Notification] = []
        self._height = 0
        self._last_timestamp = 0

        self._lock = threading.RLock()
        self._in_operation = False

    # ------------------------------------------------------------------
    # Transaction scope
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, operation: str, caller: str) -> Iterator[_TxContext]:
        with self._lock:
            if self._in_operation:
                raise ReentrantCall(
                    f"{operation} called while another operation is in progress",
                    context={"caller": caller},
                )
            self._in_operation = True
            snapshot = self._snapshot()
            tx = _TxContext(operation=operation, height=self._height + 1,
                            now=max(int(self.clock()), self._last_timestamp))
            try:
                yield tx
            except Exception as e:
                self._restore(snapshot)
                logger.info(
                    "Ledger operation rejected",
                    operation=operation,
                    caller=caller,
                    error_code=getattr(e, "code", type(e).__name__),
                    error=str(e),
                )
                raise
            else:
                self._height = tx.height
                self._last_timestamp = tx.now
                self._notifications.extend(tx.notifications)
            finally:
                self._in_operation = False

    def _snapshot(self) -> dict[str, Any]:
        return {
            "plans": dict(self._plans),
            "token_policies": dict(self._token_policies),
            "fee_policy": self._fee_policy,
            "relayers": set(self._relayers),
            "relayer_credit": dict(self._relayer_credit),
            "savings": dict(self._savings),
            "nonces": self.nonces.snapshot(),
            "tokens": self.tokens.snapshot(),
        }

    def _restore(self, snapshot: dict[str, Any]) -> None:
        self._plans = snapshot["plans"]
        self._token_policies = snapshot["token_policies"]
        self._fee_policy = snapshot["fee_policy"]
        self._relayers = snapshot["relayers"]
        self._relayer_credit = snapshot["relayer_credit"]
        self._savings = snapshot["savings"]
        self.nonces.restore(snapshot["nonces"])
        self.tokens.restore(snapshot["tokens"])

    # ------------------------------------------------------------------
    # Plan operations
    # ------------------------------------------------------------------

    def create_plan(
        self,
        caller: str,
        owner: str,
        token: str,
        amount_per_interval: int,
        interval: int,
        authorization: Optional[Authorization] = None
    ) -> str:
        """
        Create a recurring savings plan.

        Args:
            caller: Account submitting the operation
            owner: Account whose funds are debited
            token: Token being saved
            amount_per_interval: Positive quantity debited per execution
            interval: Positive seconds between executions
            authorization: Signed artifact; may be omitted only when the
                owner submits the operation themselves

        Returns:
            The new plan id

        Raises:
            InvalidParameters, UnsupportedToken, AuthorizationRejected
        """
        with self._transaction("create_plan", caller) as tx:
            owner = _address_param("owner", owner)
            token = _address_param("token", token)
            _positive_int_param("amount_per_interval", amount_per_interval)
            _positive_int_param("interval", interval)

            policy = self._token_policies.get(token)
            if policy is None or not policy.allowed:
                raise UnsupportedToken("Token is not allowed for savings plans", token=token)

            self._accept_authorization(tx, caller, authorization, owner, token,
                                       amount_per_interval, interval)

            plan_id = derive_plan_id(owner, token, tx.height)
            self._plans[plan_id] = Plan(
                id=plan_id,
                owner=owner,
                token=token,
                amount_per_interval=amount_per_interval,
                interval=interval,
                last_executed=tx.now,
                active=True,
                created_at=tx.now,
                created_height=tx.height,
            )
            tx.emit(NotificationKind.PLAN_CREATED, {
                "plan_id": plan_id,
                "owner": owner,
                "token": token,
                "amount_per_interval": amount_per_interval,
                "interval": interval,
            })

        log_state_transition(
            logger,
            plan_id=plan_id,
            from_state="none",
            to_state=PlanState.ACTIVE.value,
            trigger="create_plan",
            context={
                "owner": owner,
                "token": token,
                "amount_per_interval": amount_per_interval,
                "interval": interval,
                "authorization": authorization.kind if authorization else "direct",
            }
        )
        return plan_id

    def execute_plan(self, caller: str, plan_id: str) -> ExecutionQuote:
        """
        Execute one interval of a plan on behalf of a relayer.

        Pulls ``amount_per_interval`` from the owner into custody, credits the
        collectible fee to the caller, credits the remainder to the owner's
        savings, mints the yield to the owner and bumps ``last_executed``.

        Raises:
            Unauthorized, PlanNotFound, PlanInactive, TooSoon, TokenDisabled,
            TransferRejected
        """
        with self._transaction("execute_plan", caller) as tx:
            caller = self._require_relayer(caller)
            plan = self._require_plan(plan_id)

            if not plan.active:
                raise PlanInactive("Plan is cancelled", plan_id=plan_id)

            if tx.now < plan.next_eligible_at:
                raise TooSoon(
                    "Plan interval has not elapsed",
                    plan_id=plan_id,
                    next_eligible_at=plan.next_eligible_at,
                    context={"now": tx.now},
                )

            policy = self._token_policies.get(plan.token)
            if policy is None or not policy.allowed:
                raise TokenDisabled("Token policy no longer allows this plan", token=plan.token)

            token = self._require_token(plan.token)
            quote = self.calculator.quote_execution(plan, policy, self._fee_policy)

            try:
                token.transfer_from(self.address, plan.owner, self.address, quote.amount)
            except TokenOperationError as e:
                raise TransferRejected(f"Debit from owner failed: {e}", token=plan.token)

            if quote.collected_fee > 0:
                key = (caller, plan.token)
                self._relayer_credit[key] = self._relayer_credit.get(key, 0) + quote.collected_fee

            savings_key = (plan.owner, plan.token)
            self._savings[savings_key] = self._savings.get(savings_key, 0) + quote.amount_saved

            if quote.yield_amount > 0:
                reward = self._require_token(self.reward_token)
                try:
                    reward.mint(self.address, plan.owner, quote.yield_amount)
                except TokenOperationError as e:
                    raise TransferRejected(f"Reward mint failed: {e}", token=self.reward_token)

            self._plans[plan_id] = plan.with_executed(tx.now)
            tx.emit(NotificationKind.PLAN_EXECUTED, {
                "plan_id": plan_id,
                "amount_saved": quote.amount_saved,
                "yield_amount": quote.yield_amount,
                "fee": quote.fee,
                "fee_collected": quote.fee_collected,
                "relayer": caller,
            })

        logger.info(
            "Plan executed",
            plan_id=plan_id,
            relayer=caller,
            amount=quote.amount,
            amount_saved=quote.amount_saved,
            yield_amount=quote.yield_amount,
            fee=quote.fee,
            fee_collected=quote.fee_collected,
            executed_at=tx.now,
        )
        return quote

    def cancel_plan(self, caller: str, plan_id: str) -> None:
        """Cancel a plan; only its owner may do so. Raises NotActive if already cancelled."""
        with self._transaction("cancel_plan", caller) as tx:
            plan = self._require_plan(plan_id)
            if _address_param("caller", caller) != plan.owner:
                raise Unauthorized("Only the plan owner can cancel it",
                                   caller=caller, required_role="owner")
            self._cancel(tx, plan)

        log_state_transition(logger, plan_id=plan_id, from_state=PlanState.ACTIVE.value,
                             to_state=PlanState.CANCELLED.value, trigger="cancel_plan",
                             context={"caller": caller})

    def cancel_for(self, caller: str, owner: str) -> list[str]:
        """
        Cancel every active plan of ``owner``; administrator or relayer only.

        Returns:
            Ids of the plans cancelled

        Raises:
            NotActive: when the owner has no active plan
        """
        with self._transaction("cancel_for", caller) as tx:
            caller = _address_param("caller", caller)
            if caller != self.admin and caller not in self._relayers:
                raise Unauthorized("Only the administrator or a relayer can cancel for an owner",
                                   caller=caller, required_role="admin_or_relayer")
            owner = _address_param("owner", owner)
            active = [p for p in self._plans.values() if p.owner == owner and p.active]
            if not active:
                raise NotActive("Owner has no active plan", context={"owner": owner})
            for plan in active:
                self._cancel(tx, plan)

        cancelled = [p.id for p in active]
        for plan_id in cancelled:
            log_state_transition(logger, plan_id=plan_id, from_state=PlanState.ACTIVE.value,
                                 to_state=PlanState.CANCELLED.value, trigger="cancel_for",
                                 context={"caller": caller, "owner": owner})
        return cancelled

    def _cancel(self, tx: _TxContext, plan: Plan) -> None:
        if not plan.active:
            raise NotActive("Plan is already cancelled", plan_id=plan.id)
        self._plans[plan.id] = plan.with_cancelled()
        tx.emit(NotificationKind.PLAN_CANCELLED, {"owner": plan.owner, "plan_id": plan.id})

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    def withdraw_relayer_credit(self, caller: str, token: Optional[str] = None) -> int:
        """
        Pay out the caller's accrued relayer credit.

        The balance is zeroed before the outbound transfer; a failed transfer
        rolls the zeroing back with the rest of the operation.

        Args:
            caller: Relayer withdrawing
            token: Credit token, defaults to the current fee token

        Returns:
            Amount paid out

        Raises:
            NothingToWithdraw, TransferRejected
        """
        with self._transaction("withdraw_relayer_credit", caller) as tx:
            caller = _address_param("caller", caller)
            token = self._credit_token(token)
            key = (caller, token)
            amount = self._relayer_credit.get(key, 0) if token else 0
            if amount == 0:
                raise NothingToWithdraw("No relayer credit to withdraw",
                                        context={"relayer": caller, "token": token})

            self._relayer_credit[key] = 0
            try:
                self._require_token(token).transfer(self.address, caller, amount)
            except TokenOperationError as e:
                raise TransferRejected(f"Credit payout failed: {e}", token=token)

            tx.emit(NotificationKind.CREDIT_WITHDRAWN, {
                "relayer": caller, "token": token, "amount": amount,
            })

        logger.info("Relayer credit withdrawn", relayer=caller, token=token, amount=amount)
        return amount

    def withdraw_savings(self, caller: str, token: str, amount: int) -> int:
        """Withdraw from the caller's custodial savings balance."""
        with self._transaction("withdraw_savings", caller) as tx:
            caller = _address_param("caller", caller)
            token = _address_param("token", token)
            _positive_int_param("amount", amount)

            key = (caller, token)
            balance = self._savings.get(key, 0)
            if amount > balance:
                raise InsufficientSavings("Withdrawal exceeds savings balance",
                                          context={"balance": balance, "requested": amount})

            self._savings[key] = balance - amount
            try:
                self._require_token(token).transfer(self.address, caller, amount)
            except TokenOperationError as e:
                raise TransferRejected(f"Savings payout failed: {e}", token=token)

        logger.info("Savings withdrawn", owner=caller, token=token, amount=amount,
                    height=tx.height)
        return amount

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def set_token_policy(self, caller: str, token: str, yield_rate_bps: int,
                         allowed: bool) -> TokenPolicy:
        with self._transaction("set_token_policy", caller):
            self._require_admin(caller)
            token = _address_param("token", token)
            _non_negative_int_param("yield_rate_bps", yield_rate_bps)
            if token not in self.tokens:
                raise UnsupportedToken("Token is not hosted on this network", token=token)
            policy = TokenPolicy(token=token, yield_rate_bps=yield_rate_bps,
                                 allowed=bool(allowed))
            self._token_policies[token] = policy

        logger.info("Token policy set", token=token, yield_rate_bps=yield_rate_bps,
                    allowed=bool(allowed))
        return policy

    def set_fee_policy(
        self,
        caller: str,
        fee_token: str,
        base_fee: int,
        percent_fee_bps: int,
        active: bool,
        expected_version: Optional[int] = None
    ) -> FeePolicy:
        """
        Replace the global fee policy.

        ``expected_version`` turns the write into a compare-and-swap against
        the current policy version.
        """
        with self._transaction("set_fee_policy", caller):
            self._require_admin(caller)
            fee_token = _address_param("fee_token", fee_token)
            _non_negative_int_param("base_fee", base_fee)
            _non_negative_int_param("percent_fee_bps", percent_fee_bps)
            if percent_fee_bps > BASIS_POINTS:
                raise InvalidParameters("percent_fee_bps cannot exceed 10000",
                                        field="percent_fee_bps", value=percent_fee_bps)

            current_version = self._fee_policy.version if self._fee_policy else 0
            if expected_version is not None and expected_version != current_version:
                raise PolicyVersionConflict("Fee policy changed since it was read",
                                            expected_version=expected_version,
                                            current_version=current_version)

            policy = FeePolicy(fee_token=fee_token, base_fee=base_fee,
                               percent_fee_bps=percent_fee_bps, active=bool(active),
                               version=current_version + 1)
            self._fee_policy = policy

        logger.info("Fee policy set", **policy.to_dict())
        return policy

    def set_relayer_role(self, caller: str, relayer: str, enabled: bool) -> None:
        with self._transaction("set_relayer_role", caller):
            self._require_admin(caller)
            relayer = _address_param("relayer", relayer)
            if enabled:
                self._relayers.add(relayer)
            else:
                self._relayers.discard(relayer)

        logger.info("Relayer role set", relayer=relayer, enabled=bool(enabled))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def height(self) -> int:
        return self._height

    def now(self) -> int:
        """Timestamp the next operation would observe."""
        return max(int(self.clock()), self._last_timestamp)

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        with self._lock:
            return self._plans.get(plan_id)

    def plans_of(self, owner: str) -> list[Plan]:
        owner = owner.lower()
        with self._lock:
            return [p for p in self._plans.values() if p.owner == owner]

    def token_policy(self, token: str) -> Optional[TokenPolicy]:
        with self._lock:
            return self._token_policies.get(token.lower())

    def fee_policy(self) -> Optional[FeePolicy]:
        return self._fee_policy

    def relayer_credit(self, relayer: str, token: Optional[str] = None) -> int:
        with self._lock:
            token = self._credit_token(token)
            if token is None:
                return 0
            return self._relayer_credit.get((relayer.lower(), token), 0)

    def savings_balance(self, owner: str, token: str) -> int:
        with self._lock:
            return self._savings.get((owner.lower(), token.lower()), 0)

    def authorization_nonce(self, owner: str) -> int:
        with self._lock:
            return self.nonces.current(owner)

    def is_relayer(self, account: str) -> bool:
        return account.lower() in self._relayers

    def is_reward_minter(self) -> bool:
        """True when the reward token lets this ledger mint."""
        reward = self.tokens.get(self.reward_token)
        return reward is not None and reward.minter == self.address

    def notifications(
        self,
        kind: Optional[NotificationKind] = None,
        from_height: int = 0,
        to_height: Optional[int] = None
    ) -> list[Notification]:
        """Committed notifications with ``from_height <= height <= to_height``."""
        with self._lock:
            upper = self._height if to_height is None else to_height
            return [
                n for n in self._notifications
                if from_height <= n.height <= upper and (kind is None or n.kind == kind)
            ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _accept_authorization(
        self,
        tx: _TxContext,
        caller: str,
        authorization: Optional[Authorization],
        owner: str,
        token: str,
        amount: int,
        interval: int
    ) -> None:
        if authorization is None:
            if caller.lower() != owner:
                raise AuthorizationRejected("Authorization required when caller is not the owner",
                                            owner=owner, reason="missing")
            return

        signer = self.verifier.verify(authorization, tx.now)
        if signer != owner or authorization.token.lower() != token:
            raise AuthorizationRejected("Authorization does not match the plan",
                                        owner=owner, reason="binding")

        if isinstance(authorization, SubscriptionAuthorization):
            if authorization.amount != amount or authorization.interval != interval:
                raise AuthorizationRejected("Authorization does not match the plan",
                                            owner=owner, reason="binding")
            self.nonces.consume(owner, authorization.nonce)

        elif isinstance(authorization, PermitAuthorization):
            if authorization.value < amount:
                raise AuthorizationRejected("Permit value is below the plan amount",
                                            owner=owner, reason="binding")
            try:
                self._require_token(token).permit(
                    owner, self.address, authorization.value, authorization.nonce,
                    authorization.deadline, tx.now,
                )
            except (TokenOperationError, TransferRejected) as e:
                raise AuthorizationRejected(f"Permit rejected by token: {e}",
                                            owner=owner, reason="permit")

    def _token_domain(self, token: str) -> Optional[TypedDataDomain]:
        hosted = self.tokens.get(token)
        return hosted.domain(self.params.chain_id) if hosted else None

    def _credit_token(self, token: Optional[str]) -> Optional[str]:
        if token is not None:
            return _address_param("token", token)
        return self._fee_policy.fee_token if self._fee_policy else None

    def _require_plan(self, plan_id: str) -> Plan:
        plan = self._plans.get(plan_id) if isinstance(plan_id, str) else None
        if plan is None:
            raise PlanNotFound("Unknown plan", plan_id=plan_id)
        return plan

    def _require_token(self, address: str) -> FungibleToken:
        token = self.tokens.get(address)
        if token is None:
            raise TransferRejected("Token is not hosted on this network", token=address)
        return token

    def _require_admin(self, caller: str) -> None:
        if caller.lower() != self.admin:
            raise Unauthorized("Administrator only", caller=caller, required_role="admin")

    def _require_relayer(self, caller: str) -> str:
        caller = caller.lower()
        if caller not in self._relayers:
            raise Unauthorized("Relayer role required", caller=caller, required_role="relayer")
        return caller


def _address_param(name: str, value: Any) -> str:
    try:
        return normalize_address(value)
    except ValueError:
        raise InvalidParameters(f"{name} must be a 0x-prefixed 20-byte address",
                                field=name, value=value)


def _positive_int_param(name: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise InvalidParameters(f"{name} must be a positive integer", field=name, value=value)


def _non_negative_int_param(name: str, value: Any) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise InvalidParameters(f"{name} must be a non-negative integer",
                                field=name, value=value)


__all__ = ["PlanLedger", "LedgerError"]
