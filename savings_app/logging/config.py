"""
Structured logging for the savings ledger and relayer.

Every component logs through structlog with key/value events. The ledger
binds ``subsystem="ledger"`` and marks its events as audit trail; the
discovery and execution loops bind ``subsystem="relayer"``. JSON output is
rendered with orjson, and token quantities wider than 64 bits are written
as decimal strings, the same way they travel over RPC.
"""
import logging
import sys
from typing import Any, Optional

import orjson
import structlog
from structlog.types import EventDict, FilteringBoundLogger, WrappedLogger

from ..config.defaults import LoggingParams

_INT64_MIN = -(2 ** 63)
_UINT64_MAX = 2 ** 64 - 1

# Chatty third-party loggers kept at WARNING unless DEBUG is asked for
_QUIET_LOGGERS = ("uvicorn.access", "urllib3")


def stringify_wide_ints(logger: WrappedLogger, method_name: str,
                        event_dict: EventDict) -> EventDict:
    """Render integers outside the 64-bit range as decimal strings."""
    for key, value in event_dict.items():
        if isinstance(value, int) and not isinstance(value, bool):
            if value < _INT64_MIN or value > _UINT64_MAX:
                event_dict[key] = str(value)
    return event_dict


def _orjson_dumps(event_dict: EventDict, **kwargs: Any) -> str:
    return orjson.dumps(event_dict, default=str).decode()


def configure_logging(
    level: str = "INFO",
    format_json: bool = False,
    include_timestamp: bool = True,
    include_caller: bool = False,
    extra_processors: Optional[list] = None
) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_json: Emit one JSON object per line instead of console output
        include_timestamp: Add an ISO timestamp to each event
        include_caller: Add filename and line number to each event
        extra_processors: Processors run just before rendering
    """
    log_level = getattr(logging, level.upper())
    logging.basicConfig(level=log_level, stream=sys.stdout, format="%(message)s")
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(min(max(log_level, logging.WARNING),
                                             logging.CRITICAL))

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    if include_caller:
        processors.append(structlog.processors.CallsiteParameterAdder(
            parameters=[structlog.processors.CallsiteParameter.FILENAME,
                        structlog.processors.CallsiteParameter.LINENO]
        ))
    if extra_processors:
        processors.extend(extra_processors)

    if format_json:
        processors.append(stringify_wide_ints)
        processors.append(structlog.processors.JSONRenderer(serializer=_orjson_dumps))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_from_params(params: LoggingParams) -> None:
    """Apply the ``logging`` section of the loaded configuration."""
    configure_logging(
        level=params.level,
        format_json=params.format_json,
        include_caller=params.include_caller,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    return structlog.get_logger(name)


def get_ledger_logger(name: str) -> FilteringBoundLogger:
    """Logger for ledger operations; every event is part of the audit trail."""
    return get_logger(name).bind(subsystem="ledger", audit_trail=True)


def get_relayer_logger(name: str) -> FilteringBoundLogger:
    """Logger for the discovery and execution loops."""
    return get_logger(name).bind(subsystem="relayer")


def log_gate_decision(
    logger: FilteringBoundLogger,
    gate_name: str,
    passed: bool,
    plan_id: str,
    reason: str,
    context: Optional[dict[str, Any]] = None
) -> None:
    """
    Log one eligibility check the executor makes before submitting.

    Passes are DEBUG since every due plan passes several per tick; failures
    are INFO so skipped plans show up at the default level.
    """
    fields: dict[str, Any] = {
        "gate_name": gate_name,
        "gate_result": "PASS" if passed else "FAIL",
        "plan_id": plan_id,
        "reason": reason,
    }
    if context:
        fields["context"] = context

    if passed:
        logger.debug("Gate passed", **fields)
    else:
        logger.info("Gate failed", **fields)


def log_state_transition(
    logger: FilteringBoundLogger,
    plan_id: str,
    from_state: str,
    to_state: str,
    trigger: str,
    context: Optional[dict[str, Any]] = None
) -> None:
    """Log a plan moving between ``active`` and ``cancelled``."""
    fields: dict[str, Any] = {
        "plan_id": plan_id,
        "from_state": from_state,
        "to_state": to_state,
        "trigger": trigger,
    }
    if context:
        fields["context"] = context
    logger.info("State transition", **fields)
