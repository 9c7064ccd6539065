"""Default configuration parameters for the savings ledger and relayer."""

from dataclasses import dataclass


SECONDS_PER_YEAR = 365 * 86400
BASIS_POINTS = 10_000


@dataclass(frozen=True)
class LedgerParams:
    """Ledger identity and the structured-signature domain it is bound to."""
    name: str = "DailySavings"
    version: str = "1"
    chain_id: int = 48898
    address: str = "0x7f88a4818b03053cb04d984d4e9abe576afa10d0"
    reward_token: str = "0x4f0dfc7a638aa3f9b26f5aea7f086526b269d53e"


@dataclass(frozen=True)
class RelayerParams:
    """Scheduler loop parameters."""
    rpc_url: str = "http://127.0.0.1:8545"
    discovery_interval_seconds: float = 300.0     # Notification scan period
    execution_interval_seconds: float = 60.0      # Readiness evaluation period
    max_window: int = 5000                        # Max heights per discovery scan
    start_height: int = 0                         # Cursor value on first run
    request_timeout_seconds: float = 10.0         # Per network call
    receipt_poll_interval_seconds: float = 1.0
    receipt_timeout_seconds: float = 120.0        # Bound on waiting for a receipt
    max_concurrent_executions: int = 4
    restart_delay_seconds: float = 5.0            # Supervisor back-off after crash


@dataclass(frozen=True)
class StoreParams:
    """Local durable state for the relayer."""
    db_path: str = "data/relayer.db"


@dataclass(frozen=True)
class LoggingParams:
    """Logging output parameters."""
    level: str = "INFO"
    format_json: bool = False
    include_caller: bool = False


@dataclass(frozen=True)
class AppConfig:
    """Complete configuration."""
    ledger: LedgerParams
    relayer: RelayerParams
    store: StoreParams
    logging: LoggingParams


def get_default_config() -> AppConfig:
    """Get the default configuration instance."""
    return AppConfig(
        ledger=LedgerParams(),
        relayer=RelayerParams(),
        store=StoreParams(),
        logging=LoggingParams(),
    )
