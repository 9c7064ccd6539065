"""
System failure error classifications.

These exceptions represent failures outside the ledger's own rules: the local
store, the transport to the ledger node, or a receipt that never arrived.
"""

from typing import Any, Optional


class SystemFailureError(Exception):
    """Base class for system failures."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class PersistenceError(SystemFailureError):
    """Database or file system persistence failures."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 target: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.target = target


class LedgerUnavailableError(SystemFailureError):
    """The ledger node could not be reached or answered malformed data."""

    def __init__(self, message: str, endpoint: Optional[str] = None,
                 method: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.endpoint = endpoint
        self.method = method
        self.recoverable = True


class ReceiptTimeoutError(SystemFailureError):
    """A submitted transaction produced no receipt within the wait bound."""

    def __init__(self, message: str, tx_hash: Optional[str] = None,
                 waited_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.tx_hash = tx_hash
        self.waited_seconds = waited_seconds
        self.recoverable = True


class ConfigurationError(SystemFailureError):
    """Merged configuration failed validation."""

    def __init__(self, message: str, errors: Optional[list[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []
