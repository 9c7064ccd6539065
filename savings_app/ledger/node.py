"""
In-process ledger node.

The node stands in for the hosting network: it authenticates signed
transactions, orders them one at a time against the ``PlanLedger``, and keeps
a receipt for every transaction it has seen. Resubmitting a transaction with
the same ``tx_id`` never re-executes it; the original receipt is returned.
"""

import hashlib
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

import orjson

from ..auth.artifacts import authorization_from_dict
from ..auth.signing import AccountKey, recover_signer
from ..errors import InvalidTransaction, LedgerError
from ..logging.config import get_ledger_logger
from .machine import PlanLedger
from .models import decode_quantities, encode_quantities

logger = get_ledger_logger(__name__)

# Cost charged per method, paid whether or not the operation succeeds
METHOD_COSTS: dict[str, int] = {
    "create_plan": 150_000,
    "execute_plan": 120_000,
    "cancel_plan": 40_000,
    "cancel_for": 60_000,
    "withdraw_relayer_credit": 50_000,
    "withdraw_savings": 50_000,
    "set_token_policy": 30_000,
    "set_fee_policy": 30_000,
    "set_relayer_role": 30_000,
}


class ReceiptStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class SignedTransaction:
    """A method call on the ledger, signed by its sender."""
    sender: str
    public_key: str
    method: str
    params: dict[str, Any]
    tx_id: str
    signature: str = ""

    def signing_payload(self) -> bytes:
        return orjson.dumps({
            "sender": self.sender.lower(),
            "method": self.method,
            "params": self.params,
            "tx_id": self.tx_id,
        }, option=orjson.OPT_SORT_KEYS)

    def digest(self) -> bytes:
        return hashlib.sha256(self.signing_payload()).digest()

    @property
    def tx_hash(self) -> str:
        return "0x" + self.digest().hex()

    @classmethod
    def create(cls, key: AccountKey, method: str, params: dict[str, Any],
               tx_id: Optional[str] = None) -> "SignedTransaction":
        """Build and sign a transaction; ``params`` must already be in wire form."""
        unsigned = cls(
            sender=key.address,
            public_key=key.public_key_hex,
            method=method,
            params=params,
            tx_id=tx_id or uuid.uuid4().hex,
        )
        return cls(
            sender=unsigned.sender,
            public_key=unsigned.public_key,
            method=unsigned.method,
            params=unsigned.params,
            tx_id=unsigned.tx_id,
            signature=key.sign(unsigned.digest()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sender": self.sender,
            "public_key": self.public_key,
            "method": self.method,
            "params": self.params,
            "tx_id": self.tx_id,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignedTransaction":
        envelope = ("sender", "public_key", "method", "tx_id", "signature")
        if not all(isinstance(data.get(key), str) for key in envelope):
            raise InvalidTransaction("Transaction envelope fields must be strings")
        try:
            return cls(
                sender=data["sender"],
                public_key=data["public_key"],
                method=data["method"],
                params=dict(data.get("params") or {}),
                tx_id=data["tx_id"],
                signature=data["signature"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidTransaction(f"Malformed transaction: {e}")


@dataclass(frozen=True)
class TxReceipt:
    """Outcome of an included transaction."""
    tx_hash: str
    tx_id: str
    method: str
    status: ReceiptStatus
    height: int
    cost_paid: int
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    result: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status == ReceiptStatus.SUCCESS

    def to_dict(self) -> dict[str, Any]:
        data = encode_quantities({"height": self.height, "cost_paid": self.cost_paid})
        data.update({
            "tx_hash": self.tx_hash,
            "tx_id": self.tx_id,
            "method": self.method,
            "status": self.status.value,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "result": self.result,
        })
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TxReceipt":
        values = decode_quantities(data)
        return cls(
            tx_hash=values["tx_hash"],
            tx_id=values["tx_id"],
            method=values["method"],
            status=ReceiptStatus(values["status"]),
            height=values["height"],
            cost_paid=values["cost_paid"],
            error_code=values.get("error_code"),
            error_message=values.get("error_message"),
            result=values.get("result"),
        )


@dataclass
class _Dispatch:
    handler: Callable[[str, dict[str, Any]], Any]
    required: tuple[str, ...] = field(default_factory=tuple)


class LedgerNode:
    """Authenticates, orders and records transactions against one ledger."""

    def __init__(self, ledger: PlanLedger):
        self.ledger = ledger
        self._receipts: dict[str, TxReceipt] = {}
        self._receipts_by_id: dict[tuple[str, str], TxReceipt] = {}
        self._lock = threading.Lock()
        self._dispatch: dict[str, _Dispatch] = {
            "create_plan": _Dispatch(self._create_plan,
                                     ("owner", "token", "amount_per_interval", "interval")),
            "execute_plan": _Dispatch(self._execute_plan, ("plan_id",)),
            "cancel_plan": _Dispatch(
                lambda sender, p: ledger.cancel_plan(sender, p["plan_id"]), ("plan_id",)),
            "cancel_for": _Dispatch(
                lambda sender, p: ledger.cancel_for(sender, p["owner"]), ("owner",)),
            "withdraw_relayer_credit": _Dispatch(
                lambda sender, p: str(ledger.withdraw_relayer_credit(sender, p.get("token")))),
            "withdraw_savings": _Dispatch(
                lambda sender, p: str(ledger.withdraw_savings(sender, p["token"], p["amount"])),
                ("token", "amount")),
            "set_token_policy": _Dispatch(
                lambda sender, p: ledger.set_token_policy(
                    sender, p["token"], p["yield_rate_bps"], p["allowed"]).to_dict(),
                ("token", "yield_rate_bps", "allowed")),
            "set_fee_policy": _Dispatch(
                lambda sender, p: ledger.set_fee_policy(
                    sender, p["fee_token"], p["base_fee"], p["percent_fee_bps"],
                    p["active"], p.get("expected_version")).to_dict(),
                ("fee_token", "base_fee", "percent_fee_bps", "active")),
            "set_relayer_role": _Dispatch(
                lambda sender, p: ledger.set_relayer_role(sender, p["relayer"], p["enabled"]),
                ("relayer", "enabled")),
        }

    @property
    def head_height(self) -> int:
        return self.ledger.height

    def submit(self, tx: SignedTransaction) -> TxReceipt:
        """
        Include a transaction and return its receipt.

        Ledger rule violations produce a failed receipt; the cost is still
        paid. Envelope problems (bad signature, unknown method, missing
        parameters) raise ``InvalidTransaction`` and nothing is recorded.
        """
        with self._lock:
            dedup_key = (tx.sender.lower(), tx.tx_id)
            existing = self._receipts_by_id.get(dedup_key)
            if existing is not None:
                logger.info("Duplicate transaction ignored", tx_id=tx.tx_id,
                            tx_hash=existing.tx_hash)
                return existing

            dispatch = self._authenticate(tx)
            try:
                params = decode_quantities(tx.params)
            except ValueError as e:
                raise InvalidTransaction(f"Malformed quantity: {e}", tx_id=tx.tx_id)
            sender = tx.sender.lower()

            try:
                result = dispatch.handler(sender, params)
                receipt = TxReceipt(
                    tx_hash=tx.tx_hash, tx_id=tx.tx_id, method=tx.method,
                    status=ReceiptStatus.SUCCESS, height=self.ledger.height,
                    cost_paid=METHOD_COSTS[tx.method], result=result,
                )
            except LedgerError as e:
                receipt = TxReceipt(
                    tx_hash=tx.tx_hash, tx_id=tx.tx_id, method=tx.method,
                    status=ReceiptStatus.FAILED, height=self.ledger.height,
                    cost_paid=METHOD_COSTS[tx.method],
                    error_code=e.code, error_message=str(e),
                )

            self._receipts[receipt.tx_hash] = receipt
            self._receipts_by_id[dedup_key] = receipt

        logger.debug("Transaction included", tx_hash=receipt.tx_hash, method=tx.method,
                     status=receipt.status.value, height=receipt.height)
        return receipt

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        with self._lock:
            return self._receipts.get(tx_hash)

    def _authenticate(self, tx: SignedTransaction) -> _Dispatch:
        dispatch = self._dispatch.get(tx.method)
        if dispatch is None:
            raise InvalidTransaction(f"Unknown method: {tx.method}", tx_id=tx.tx_id)

        missing = [name for name in dispatch.required if name not in tx.params]
        if missing:
            raise InvalidTransaction(f"Missing parameters: {', '.join(missing)}",
                                     tx_id=tx.tx_id)

        signer = recover_signer(tx.digest(), tx.signature, tx.public_key)
        if signer is None or signer != tx.sender.lower():
            raise InvalidTransaction("Transaction signature does not match sender",
                                     tx_id=tx.tx_id)
        return dispatch

    def _create_plan(self, sender: str, params: dict[str, Any]) -> str:
        raw = params.get("authorization")
        try:
            authorization = authorization_from_dict(raw) if raw else None
        except ValueError as e:
            raise InvalidTransaction(f"Malformed authorization: {e}")
        return self.ledger.create_plan(
            sender,
            params["owner"],
            params["token"],
            params["amount_per_interval"],
            params["interval"],
            authorization,
        )

    def _execute_plan(self, sender: str, params: dict[str, Any]) -> dict[str, Any]:
        quote = self.ledger.execute_plan(sender, params["plan_id"])
        return encode_quantities({
            "amount": quote.amount,
            "amount_saved": quote.amount_saved,
            "yield_amount": quote.yield_amount,
            "fee": quote.fee,
            "fee_collected": quote.fee_collected,
        })
