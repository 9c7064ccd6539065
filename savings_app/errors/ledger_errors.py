"""
Ledger error classifications for plan, policy and authorization failures.

Every ledger operation is all-or-nothing: raising any of these from inside an
operation discards all of that operation's effects. The ``code`` attribute is
the stable wire identifier used in transaction receipts.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base class for rejected ledger operations."""

    code = "ledger_error"

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class InvalidParameters(LedgerError):
    """Malformed or zero/negative quantities."""

    code = "invalid_parameters"

    def __init__(self, message: str, field: Optional[str] = None,
                 value: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value


class UnsupportedToken(LedgerError):
    """Token policy is missing or not allowed at plan creation."""

    code = "unsupported_token"

    def __init__(self, message: str, token: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.token = token


class TokenDisabled(LedgerError):
    """Token policy was revoked after the plan was created."""

    code = "token_disabled"

    def __init__(self, message: str, token: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.token = token


class AuthorizationRejected(LedgerError):
    """Signature, nonce or deadline check failed."""

    code = "authorization_rejected"

    def __init__(self, message: str, owner: Optional[str] = None,
                 reason: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.owner = owner
        self.reason = reason


class PlanNotFound(LedgerError):
    """No plan exists with the given id."""

    code = "plan_not_found"

    def __init__(self, message: str, plan_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.plan_id = plan_id


class PlanInactive(LedgerError):
    """Execution attempted on a cancelled plan."""

    code = "plan_inactive"

    def __init__(self, message: str, plan_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.plan_id = plan_id


class TooSoon(LedgerError):
    """Execution attempted before ``last_executed + interval``."""

    code = "too_soon"

    def __init__(self, message: str, plan_id: Optional[str] = None,
                 next_eligible_at: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.plan_id = plan_id
        self.next_eligible_at = next_eligible_at


class NotActive(LedgerError):
    """Cancellation attempted on a plan that is already cancelled."""

    code = "not_active"

    def __init__(self, message: str, plan_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.plan_id = plan_id


class TransferRejected(LedgerError):
    """External funds movement failed; the whole operation aborts."""

    code = "transfer_rejected"

    def __init__(self, message: str, token: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.token = token


class NothingToWithdraw(LedgerError):
    """Relayer credit balance is zero."""

    code = "nothing_to_withdraw"


class InsufficientSavings(LedgerError):
    """Savings withdrawal exceeds the owner's custodial balance."""

    code = "insufficient_savings"


class Unauthorized(LedgerError):
    """Caller lacks the role required by the operation."""

    code = "unauthorized"

    def __init__(self, message: str, caller: Optional[str] = None,
                 required_role: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.caller = caller
        self.required_role = required_role


class ReentrantCall(LedgerError):
    """A mutating call was made while another one is still in progress."""

    code = "reentrant_call"


class PolicyVersionConflict(LedgerError):
    """Compare-and-swap on the fee policy saw a newer version."""

    code = "policy_version_conflict"

    def __init__(self, message: str, expected_version: Optional[int] = None,
                 current_version: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.expected_version = expected_version
        self.current_version = current_version


class InvalidTransaction(LedgerError):
    """Transaction envelope is unsigned, mis-signed or names an unknown method."""

    code = "invalid_transaction"

    def __init__(self, message: str, tx_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.tx_id = tx_id


_ERRORS_BY_CODE: dict[str, type[LedgerError]] = {
    cls.code: cls for cls in (
        LedgerError, InvalidParameters, UnsupportedToken, TokenDisabled,
        AuthorizationRejected, PlanNotFound, PlanInactive, TooSoon, NotActive,
        TransferRejected, NothingToWithdraw, InsufficientSavings, Unauthorized,
        ReentrantCall, PolicyVersionConflict, InvalidTransaction,
    )
}


def error_from_code(code: str, message: str) -> LedgerError:
    """Rebuild a ledger error from its wire code."""
    cls = _ERRORS_BY_CODE.get(code, LedgerError)
    return cls(message)
