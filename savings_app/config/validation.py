"""Configuration validation utilities."""

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse


@dataclass(frozen=True)
class ValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    value: Any


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigValidator:
    """Validates configuration parameters."""

    @staticmethod
    def validate_ledger_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate ledger identity parameters."""
        errors = []

        if "chain_id" in params:
            value = params["chain_id"]
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                errors.append(ValidationError(
                    field="chain_id",
                    message="Must be a positive integer",
                    value=value
                ))

        for name in ("address", "reward_token"):
            if name in params:
                value = params[name]
                if not isinstance(value, str) or not value.startswith("0x") or len(value) != 42:
                    errors.append(ValidationError(
                        field=name,
                        message="Must be a 0x-prefixed 20-byte hex address",
                        value=value
                    ))

        return errors

    @staticmethod
    def validate_relayer_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate scheduler loop parameters."""
        errors = []

        if "rpc_url" in params:
            value = params["rpc_url"]
            parsed = urlparse(value) if isinstance(value, str) else None
            if parsed is None or not parsed.scheme or not parsed.netloc:
                errors.append(ValidationError(
                    field="rpc_url",
                    message="Must be an absolute URL",
                    value=value
                ))

        for name in ("discovery_interval_seconds", "execution_interval_seconds",
                     "request_timeout_seconds", "receipt_poll_interval_seconds",
                     "receipt_timeout_seconds"):
            if name in params:
                value = params[name]
                if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                    errors.append(ValidationError(
                        field=name,
                        message="Must be a positive number",
                        value=value
                    ))

        for name in ("max_window", "max_concurrent_executions"):
            if name in params:
                value = params[name]
                if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                    errors.append(ValidationError(
                        field=name,
                        message="Must be a positive integer",
                        value=value
                    ))

        if "start_height" in params:
            value = params["start_height"]
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                errors.append(ValidationError(
                    field="start_height",
                    message="Must be a non-negative integer",
                    value=value
                ))

        if ("receipt_timeout_seconds" in params and "request_timeout_seconds" in params
                and not errors):
            if params["receipt_timeout_seconds"] < params["request_timeout_seconds"]:
                errors.append(ValidationError(
                    field="receipt_timeout_seconds",
                    message="Must not be shorter than request_timeout_seconds",
                    value=params["receipt_timeout_seconds"]
                ))

        return errors

    @staticmethod
    def validate_logging_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate logging parameters."""
        errors = []

        if "level" in params:
            value = params["level"]
            if not isinstance(value, str) or value.upper() not in _LOG_LEVELS:
                errors.append(ValidationError(
                    field="level",
                    message=f"Must be one of {', '.join(_LOG_LEVELS)}",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_config(config: dict[str, Any]) -> list[ValidationError]:
        """Validate complete configuration."""
        errors = []

        if "ledger" in config:
            errors.extend(ConfigValidator.validate_ledger_params(config["ledger"]))

        if "relayer" in config:
            errors.extend(ConfigValidator.validate_relayer_params(config["relayer"]))

        if "logging" in config:
            errors.extend(ConfigValidator.validate_logging_params(config["logging"]))

        return errors
