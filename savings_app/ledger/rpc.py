"""
JSON request/response surface over a ``LedgerNode``.

Requests are ``{"id": ..., "method": ..., "params": {...}}``; responses carry
either ``result`` or ``error: {code, message}``. Integer quantities travel as
decimal strings. ``create_rpc_app`` exposes the handler as a FastAPI app on
``POST /`` for remote relayers; ``RpcHttpServer`` runs it under uvicorn in a
background thread.
"""

import socket
import threading
import time
from typing import Any, Callable, Optional, Union

import orjson
import uvicorn
from fastapi import FastAPI, Request, Response
from starlette.concurrency import run_in_threadpool

from ..errors import LedgerError
from ..logging.config import get_logger
from .models import NotificationKind
from .node import LedgerNode, SignedTransaction

logger = get_logger(__name__)

PARSE_ERROR = "parse_error"
METHOD_NOT_FOUND = "method_not_found"
INVALID_PARAMS = "invalid_params"


class RpcError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


class LedgerRpcHandler:
    """Dispatches JSON requests to node queries and submissions."""

    def __init__(self, node: LedgerNode):
        self.node = node
        self._methods: dict[str, Callable[[dict[str, Any]], Any]] = {
            "head_height": lambda p: str(node.head_height),
            "current_time": lambda p: str(node.ledger.now()),
            "get_plan": self._get_plan,
            "plans_of": lambda p: [plan.to_dict() for plan in node.ledger.plans_of(p["owner"])],
            "get_notifications": self._get_notifications,
            "token_policy": self._token_policy,
            "fee_policy": self._fee_policy,
            "relayer_credit": lambda p: str(node.ledger.relayer_credit(p["relayer"],
                                                                       p.get("token"))),
            "savings_balance": lambda p: str(node.ledger.savings_balance(p["owner"], p["token"])),
            "authorization_nonce": lambda p: str(node.ledger.authorization_nonce(p["owner"])),
            "is_relayer": lambda p: node.ledger.is_relayer(p["account"]),
            "is_reward_minter": lambda p: node.ledger.is_reward_minter(),
            "send_transaction": self._send_transaction,
            "get_receipt": self._get_receipt,
        }

    def handle(self, payload: Union[bytes, str]) -> bytes:
        """Handle one serialized request and return the serialized response."""
        request_id = None
        try:
            try:
                request = orjson.loads(payload)
            except orjson.JSONDecodeError as e:
                raise RpcError(PARSE_ERROR, f"Invalid JSON: {e}")
            if not isinstance(request, dict):
                raise RpcError(PARSE_ERROR, "Request must be a JSON object")

            request_id = request.get("id")
            method = request.get("method")
            params = request.get("params") or {}
            handler = self._methods.get(method)
            if handler is None:
                raise RpcError(METHOD_NOT_FOUND, f"Unknown method: {method}")
            if not isinstance(params, dict):
                raise RpcError(INVALID_PARAMS, "params must be an object")

            try:
                result = handler(params)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise RpcError(INVALID_PARAMS, f"Invalid params for {method}: {e}")

            return orjson.dumps({"id": request_id, "result": result})

        except RpcError as e:
            logger.info("RPC request rejected", code=e.code, error=str(e))
            return orjson.dumps({"id": request_id, "error": {"code": e.code, "message": str(e)}})
        except LedgerError as e:
            logger.info("RPC request rejected", code=e.code, error=str(e))
            return orjson.dumps({"id": request_id, "error": {"code": e.code, "message": str(e)}})

    def _get_plan(self, params: dict[str, Any]) -> Optional[dict[str, Any]]:
        plan = self.node.ledger.get_plan(params["plan_id"])
        return plan.to_dict() if plan else None

    def _get_notifications(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        kind = params.get("kind")
        to_height = params.get("to_height")
        notifications = self.node.ledger.notifications(
            kind=NotificationKind(kind) if kind else None,
            from_height=int(params.get("from_height", 0)),
            to_height=int(to_height) if to_height is not None else None,
        )
        return [n.to_dict() for n in notifications]

    def _token_policy(self, params: dict[str, Any]) -> Optional[dict[str, Any]]:
        policy = self.node.ledger.token_policy(params["token"])
        return policy.to_dict() if policy else None

    def _fee_policy(self, params: dict[str, Any]) -> Optional[dict[str, Any]]:
        policy = self.node.ledger.fee_policy()
        return policy.to_dict() if policy else None

    def _send_transaction(self, params: dict[str, Any]) -> dict[str, Any]:
        tx = SignedTransaction.from_dict(params["transaction"])
        receipt = self.node.submit(tx)
        return {"tx_hash": receipt.tx_hash}

    def _get_receipt(self, params: dict[str, Any]) -> Optional[dict[str, Any]]:
        receipt = self.node.get_receipt(params["tx_hash"])
        return receipt.to_dict() if receipt else None


def create_rpc_app(handler: LedgerRpcHandler) -> FastAPI:
    """Build the ASGI app serving ``handler`` on ``POST /``."""
    app = FastAPI(title="Savings Ledger RPC", version="0.1.0")

    @app.post("/")
    async def rpc(request: Request) -> Response:
        body = await request.body()
        # The ledger serializes on a lock; keep it off the event loop
        payload = await run_in_threadpool(handler.handle, body)
        return Response(content=payload, media_type="application/json")

    return app


class RpcHttpServer:
    """Runs the RPC app under uvicorn on a background thread."""

    def __init__(self, handler: LedgerRpcHandler, host: str = "127.0.0.1", port: int = 8545,
                 log_level: str = "warning"):
        self.app = create_rpc_app(handler)
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind((host, port))
        self._server = uvicorn.Server(uvicorn.Config(self.app, log_level=log_level))
        self._thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        host, port = self._socket.getsockname()[:2]
        return f"http://{host}:{port}/"

    def start(self, startup_timeout: float = 5.0) -> None:
        self._thread = threading.Thread(target=self._server.run,
                                        kwargs={"sockets": [self._socket]},
                                        name="ledger-rpc", daemon=True)
        self._thread.start()
        deadline = time.monotonic() + startup_timeout
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() >= deadline:
                raise RuntimeError(f"Ledger RPC server failed to start on {self.url}")
            time.sleep(0.01)
        logger.info("Ledger RPC server started", url=self.url)

    def wait(self) -> None:
        if self._thread:
            self._thread.join()

    def stop(self) -> None:
        self._server.should_exit = True
        if self._thread:
            self._thread.join(timeout=5)
        self._socket.close()
        logger.info("Ledger RPC server stopped")
