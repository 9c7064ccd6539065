"""
Relayer engine coordinator.

Wires configuration, the local stores, the ledger client and the two
scheduling loops:

    Ledger notifications → Discovery → Plan cache → Executor → Ledger
"""

import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Mapping, Optional

import structlog

from .auth.signing import AccountKey
from .config.defaults import AppConfig
from .config.loader import ConfigLoader
from .config.validation import ConfigValidator
from .errors import ConfigurationError
from .logging.config import configure_from_params
from .persistence.cursor import ProgressCursor
from .persistence.plan_store import PlanCache
from .relayer.client import HttpLedgerClient, LedgerClient
from .relayer.discovery import PlanDiscovery
from .relayer.executor import PlanExecutor
from .relayer.scheduler import RelayerScheduler

logger = structlog.get_logger(__name__)

RELAYER_KEY_ENV = "SAVINGS_RELAYER_KEY"


def load_relayer_key(environ: Optional[Mapping[str, str]] = None) -> AccountKey:
    """Relayer signing key from ``SAVINGS_RELAYER_KEY`` (hex Ed25519 private key)."""
    environ = os.environ if environ is None else environ
    private_hex = environ.get(RELAYER_KEY_ENV)
    if not private_hex:
        raise ConfigurationError(f"{RELAYER_KEY_ENV} is not set")
    try:
        return AccountKey.from_private_hex(private_hex)
    except ValueError as e:
        raise ConfigurationError(f"{RELAYER_KEY_ENV} is not a valid private key: {e}")


class SavingsRelayerEngine:
    """
    Main coordinator for the savings relayer.

    Owns the plan cache, the discovery cursor, the ledger client and the
    scheduler. ``run_once`` performs a single discovery catch-up and
    execution pass; ``start``/``stop`` drive the background loops.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        client: Optional[LedgerClient] = None,
        key: Optional[AccountKey] = None,
        config_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        setup_logging: bool = False
    ) -> None:
        """Initialize the relayer engine."""
        self.config = config or ConfigLoader.create(config_dir).load(environ=environ)

        errors = ConfigValidator.validate_config(asdict(self.config))
        if errors:
            messages = [f"{err.field}: {err.message} (got: {err.value})" for err in errors]
            logger.error("Configuration validation failed", errors=messages)
            raise ConfigurationError("Invalid configuration", errors=messages)

        if setup_logging:
            configure_from_params(self.config.logging)

        relayer = self.config.relayer
        if client is None:
            client = HttpLedgerClient(
                relayer.rpc_url,
                key or load_relayer_key(environ),
                timeout_seconds=relayer.request_timeout_seconds,
                receipt_poll_interval=relayer.receipt_poll_interval_seconds,
                receipt_timeout=relayer.receipt_timeout_seconds,
            )
        self.client = client

        self.cache = PlanCache(self.config.store.db_path)
        self.cursor = ProgressCursor(self.config.store.db_path,
                                     start_height=relayer.start_height)
        self.discovery = PlanDiscovery(self.client, self.cache, self.cursor,
                                       max_window=relayer.max_window)
        self.executor = PlanExecutor(self.client, self.cache,
                                     max_workers=relayer.max_concurrent_executions)
        self.scheduler = RelayerScheduler(
            self.discovery,
            self.executor,
            discovery_interval=relayer.discovery_interval_seconds,
            execution_interval=relayer.execution_interval_seconds,
        )

        logger.info("Savings relayer engine initialized", relayer=self.client.address,
                    db_path=self.config.store.db_path)

    def run_once(self) -> dict[str, Any]:
        """Single discovery catch-up and execution pass."""
        discovered, executed = self.scheduler.run_once()
        return {
            "windows_scanned": sum(1 for r in discovered if r.scanned),
            "plans_cached": sum(r.plans_cached for r in discovered),
            "executions": [
                {"plan_id": r.plan_id, "outcome": r.outcome.value, "tx_hash": r.tx_hash}
                for r in executed
            ],
        }

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def get_runtime_stats(self) -> dict[str, Any]:
        """Get runtime statistics."""
        stats = self.cache.get_stats()
        stats["cursor"] = self.cursor.load()
        stats["in_flight"] = len(self.executor.in_flight)
        stats["running"] = self.scheduler.running
        return stats
