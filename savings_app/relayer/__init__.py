"""
Off-chain relayer: plan discovery, execution and their scheduling.
"""

from .client import HttpLedgerClient, LedgerClient, LocalLedgerClient
from .discovery import DiscoveryResult, PlanDiscovery
from .executor import ExecutionOutcome, ExecutionResult, PlanExecutor
from .scheduler import RelayerScheduler

__all__ = [
    "LedgerClient",
    "LocalLedgerClient",
    "HttpLedgerClient",
    "PlanDiscovery",
    "DiscoveryResult",
    "PlanExecutor",
    "ExecutionOutcome",
    "ExecutionResult",
    "RelayerScheduler",
]
