"""
Plan ledger: authoritative plan state, hosted tokens and the network node.
"""

from .machine import PlanLedger
from .models import (
    FeePolicy,
    Notification,
    NotificationKind,
    Plan,
    PlanState,
    TokenPolicy,
    derive_plan_id,
)
from .node import LedgerNode, ReceiptStatus, SignedTransaction, TxReceipt
from .rpc import LedgerRpcHandler, RpcHttpServer, create_rpc_app
from .tokens import FungibleToken, TokenOperationError, TokenRegistry

__all__ = [
    "PlanLedger",
    "Plan",
    "PlanState",
    "TokenPolicy",
    "FeePolicy",
    "Notification",
    "NotificationKind",
    "derive_plan_id",
    "LedgerNode",
    "SignedTransaction",
    "TxReceipt",
    "ReceiptStatus",
    "LedgerRpcHandler",
    "RpcHttpServer",
    "create_rpc_app",
    "FungibleToken",
    "TokenRegistry",
    "TokenOperationError",
]
