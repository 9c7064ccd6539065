"""
Recovery strategy classifications for error handling.

The relayer treats every submission failure as transient: the next scheduled
tick is the retry.
"""

from typing import Optional


class RecoverableError(Exception):
    """Errors that the next scheduling tick recovers from."""

    def __init__(self, message: str, retry_count: int = 0, **kwargs):
        super().__init__(message)
        self.retry_count = retry_count
        self.recoverable = True


class ExecutionSubmissionError(RecoverableError):
    """An execute submission failed or landed as a failed receipt."""

    def __init__(self, message: str, plan_id: Optional[str] = None,
                 error_code: Optional[str] = None,
                 tx_hash: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.plan_id = plan_id
        self.error_code = error_code
        self.tx_hash = tx_hash
