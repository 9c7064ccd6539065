"""
Relayer access to the ledger.

``LedgerClient`` speaks the JSON request/response protocol of
``LedgerRpcHandler``; subclasses provide only the transport. Every mutating
call is a ``SignedTransaction`` signed with the relayer's key, and
``execute_plan`` waits a bounded time for its receipt.
"""

import itertools
import socket
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

import orjson

from ..auth.signing import AccountKey
from ..errors import LedgerUnavailableError, ReceiptTimeoutError, error_from_code
from ..ledger.models import FeePolicy, Notification, NotificationKind, Plan, TokenPolicy
from ..ledger.node import LedgerNode, SignedTransaction, TxReceipt
from ..ledger.rpc import LedgerRpcHandler
from ..logging.config import get_relayer_logger

logger = get_relayer_logger(__name__)


class LedgerClient(ABC):
    """Base class for ledger transports."""

    def __init__(
        self,
        key: AccountKey,
        receipt_poll_interval: float = 1.0,
        receipt_timeout: float = 120.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.key = key
        self.receipt_poll_interval = receipt_poll_interval
        self.receipt_timeout = receipt_timeout
        self._sleep = sleep
        self._ids = itertools.count(1)

    @property
    def address(self) -> str:
        return self.key.address

    @abstractmethod
    def _send(self, method: str, payload: bytes) -> bytes:
        """Deliver one serialized request and return the serialized response."""
        pass

    def _call(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        request_id = next(self._ids)
        payload = orjson.dumps({"id": request_id, "method": method, "params": params or {}})
        raw = self._send(method, payload)

        try:
            response = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise LedgerUnavailableError(f"Malformed response to {method}: {e}", method=method)

        if not isinstance(response, dict):
            raise LedgerUnavailableError(f"Malformed response to {method}", method=method)

        error = response.get("error")
        if error:
            raise error_from_code(error.get("code", ""), error.get("message", ""))
        return response.get("result")

    # Queries

    def current_height(self) -> int:
        return int(self._call("head_height"))

    def current_time(self) -> int:
        return int(self._call("current_time"))

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        data = self._call("get_plan", {"plan_id": plan_id})
        return Plan.from_dict(data) if data else None

    def get_notifications(
        self,
        from_height: int,
        to_height: int,
        kind: Optional[NotificationKind] = None
    ) -> list[Notification]:
        params: dict[str, Any] = {"from_height": from_height, "to_height": to_height}
        if kind is not None:
            params["kind"] = kind.value
        return [Notification.from_dict(item) for item in self._call("get_notifications", params)]

    def token_policy(self, token: str) -> Optional[TokenPolicy]:
        data = self._call("token_policy", {"token": token})
        return TokenPolicy.from_dict(data) if data else None

    def fee_policy(self) -> Optional[FeePolicy]:
        data = self._call("fee_policy")
        return FeePolicy.from_dict(data) if data else None

    def relayer_credit(self, token: Optional[str] = None) -> int:
        params: dict[str, Any] = {"relayer": self.address}
        if token is not None:
            params["token"] = token
        return int(self._call("relayer_credit", params))

    def is_relayer(self, account: Optional[str] = None) -> bool:
        return bool(self._call("is_relayer", {"account": account or self.address}))

    def is_reward_minter(self) -> bool:
        return bool(self._call("is_reward_minter"))

    # Transactions

    def submit_transaction(self, tx: SignedTransaction) -> str:
        result = self._call("send_transaction", {"transaction": tx.to_dict()})
        return result["tx_hash"]

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        data = self._call("get_receipt", {"tx_hash": tx_hash})
        return TxReceipt.from_dict(data) if data else None

    def wait_for_receipt(self, tx_hash: str) -> TxReceipt:
        """Poll until the receipt exists or ``receipt_timeout`` elapses."""
        started = time.monotonic()
        while True:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            waited = time.monotonic() - started
            if waited >= self.receipt_timeout:
                raise ReceiptTimeoutError(f"No receipt for {tx_hash} after {waited:.1f}s",
                                          tx_hash=tx_hash, waited_seconds=waited)
            self._sleep(self.receipt_poll_interval)

    def submit_execute(self, plan_id: str, tx_id: Optional[str] = None) -> str:
        tx = SignedTransaction.create(self.key, "execute_plan", {"plan_id": plan_id}, tx_id)
        return self.submit_transaction(tx)

    def execute_plan(self, plan_id: str, tx_id: Optional[str] = None) -> TxReceipt:
        """
        Submit an execution and wait for its receipt.

        Resubmitting with the same ``tx_id`` returns the original receipt
        instead of running the execution twice.
        """
        tx_hash = self.submit_execute(plan_id, tx_id)
        return self.wait_for_receipt(tx_hash)

    def send(self, method: str, params: dict[str, Any]) -> TxReceipt:
        """Sign, submit and await any ledger method; ``params`` in wire form."""
        tx = SignedTransaction.create(self.key, method, params)
        return self.wait_for_receipt(self.submit_transaction(tx))

    def withdraw_relayer_credit(self) -> TxReceipt:
        return self.send("withdraw_relayer_credit", {})


class LocalLedgerClient(LedgerClient):
    """Client for a ledger node running in the same process."""

    def __init__(self, node: LedgerNode, key: AccountKey, **kwargs):
        super().__init__(key, **kwargs)
        self.node = node
        self.handler = LedgerRpcHandler(node)

    def _send(self, method: str, payload: bytes) -> bytes:
        return self.handler.handle(payload)


class HttpLedgerClient(LedgerClient):
    """Client for a ledger node reached over HTTP POST."""

    def __init__(self, url: str, key: AccountKey, timeout_seconds: float = 10.0, **kwargs):
        super().__init__(key, **kwargs)
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"Invalid URL: {url}")
        self.url = url
        self.timeout_seconds = timeout_seconds

    def _send(self, method: str, payload: bytes) -> bytes:
        headers = {
            "Content-Type": "application/json",
            "Content-Length": str(len(payload)),
            "User-Agent": "savings-relayer/1.0",
        }
        req = Request(self.url, data=payload, headers=headers, method="POST")

        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                return response.read()

        except HTTPError as e:
            logger.warning("Ledger RPC HTTP error", method=method, status=e.code,
                           reason=str(e.reason))
            raise LedgerUnavailableError(f"HTTP {e.code}: {e.reason}",
                                         endpoint=self.url, method=method) from e

        except URLError as e:
            logger.warning("Ledger RPC unreachable", method=method, error=str(e.reason))
            raise LedgerUnavailableError(f"URL error: {e.reason}",
                                         endpoint=self.url, method=method) from e

        except (socket.timeout, TimeoutError) as e:
            logger.warning("Ledger RPC timeout", method=method,
                           timeout_seconds=self.timeout_seconds)
            raise LedgerUnavailableError(f"Timeout after {self.timeout_seconds}s",
                                         endpoint=self.url, method=method) from e
