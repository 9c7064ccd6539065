"""
Error classification system for the savings ledger and relayer.

Ledger errors reject an operation without side effects. System failures come
from the store or the transport. Recovery categories guide the relayer.
"""

from .ledger_errors import (
    LedgerError,
    InvalidParameters,
    UnsupportedToken,
    TokenDisabled,
    AuthorizationRejected,
    PlanNotFound,
    PlanInactive,
    TooSoon,
    NotActive,
    TransferRejected,
    NothingToWithdraw,
    InsufficientSavings,
    Unauthorized,
    ReentrantCall,
    PolicyVersionConflict,
    InvalidTransaction,
    error_from_code,
)
from .system_failures import (
    SystemFailureError,
    PersistenceError,
    LedgerUnavailableError,
    ReceiptTimeoutError,
    ConfigurationError,
)
from .recovery import (
    RecoverableError,
    ExecutionSubmissionError,
)

__all__ = [
    # Ledger Errors
    "LedgerError",
    "InvalidParameters",
    "UnsupportedToken",
    "TokenDisabled",
    "AuthorizationRejected",
    "PlanNotFound",
    "PlanInactive",
    "TooSoon",
    "NotActive",
    "TransferRejected",
    "NothingToWithdraw",
    "InsufficientSavings",
    "Unauthorized",
    "ReentrantCall",
    "PolicyVersionConflict",
    "InvalidTransaction",
    "error_from_code",
    # System Failures
    "SystemFailureError",
    "PersistenceError",
    "LedgerUnavailableError",
    "ReceiptTimeoutError",
    "ConfigurationError",
    # Recovery Categories
    "RecoverableError",
    "ExecutionSubmissionError",
]
