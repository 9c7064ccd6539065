"""Configuration loader with 3-tier parameter precedence."""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .defaults import (
    AppConfig,
    LedgerParams,
    LoggingParams,
    RelayerParams,
    StoreParams,
    get_default_config,
)

# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "SAVINGS_RPC_URL": ("relayer", "rpc_url"),
    "SAVINGS_LEDGER_ADDRESS": ("ledger", "address"),
    "SAVINGS_CHAIN_ID": ("ledger", "chain_id"),
    "SAVINGS_DB_PATH": ("store", "db_path"),
    "SAVINGS_LOG_LEVEL": ("logging", "level"),
}

_SECTIONS = {
    "ledger": LedgerParams,
    "relayer": RelayerParams,
    "store": StoreParams,
    "logging": LoggingParams,
}


@dataclass(frozen=True)
class ConfigLoader:
    """Manages configuration loading with 3-tier precedence."""

    config_dir: Path
    defaults: AppConfig

    @classmethod
    def create(cls, config_dir: Optional[Path] = None) -> "ConfigLoader":
        """Create a ConfigLoader instance."""
        if config_dir is None:
            config_dir = Path(__file__).parent.parent.parent / "config"

        return cls(
            config_dir=Path(config_dir),
            defaults=get_default_config(),
        )

    def load_file_config(self, filename: str = "relayer.yaml") -> dict[str, Any]:
        """Load overrides from a YAML file in the config directory."""
        config_file = self.config_dir / filename

        if not config_file.exists():
            return {}

        with open(config_file) as f:
            file_config = yaml.safe_load(f)

        return file_config or {}

    def load_env_config(self, environ: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
        """Collect overrides from environment variables."""
        environ = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}

        for var, (section, field_name) in ENV_OVERRIDES.items():
            if var in environ:
                overrides.setdefault(section, {})[field_name] = environ[var]

        return overrides

    def merge_config(
        self,
        filename: str = "relayer.yaml",
        environ: Optional[Mapping[str, str]] = None
    ) -> dict[str, Any]:
        """
        Merge configuration with 3-tier precedence.

        Priority order:
        1. Environment variables (highest priority)
        2. YAML file overrides
        3. Global defaults (lowest priority)
        """
        config = self._dataclass_to_dict(self.defaults)
        config = self._deep_merge(config, self.load_file_config(filename))
        config = self._deep_merge(config, self.load_env_config(environ))
        return config

    def load(
        self,
        filename: str = "relayer.yaml",
        environ: Optional[Mapping[str, str]] = None
    ) -> AppConfig:
        """Load the merged configuration as typed dataclasses."""
        return build_config(self.merge_config(filename, environ))

    def _dataclass_to_dict(self, obj: Any) -> dict[str, Any]:
        """Convert nested dataclasses to dictionary."""
        if hasattr(obj, '__dataclass_fields__'):
            result = {}
            for field_name in obj.__dataclass_fields__:
                value = getattr(obj, field_name)
                if hasattr(value, '__dataclass_fields__'):
                    result[field_name] = self._dataclass_to_dict(value)
                else:
                    result[field_name] = value
            return result
        return obj  # type: ignore[no-any-return]

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


def build_config(config: dict[str, Any]) -> AppConfig:
    """Build an AppConfig from a merged dict, coercing env strings to field types."""
    sections = {}
    for section, params_cls in _SECTIONS.items():
        values = config.get(section, {}) or {}
        kwargs = {}
        for f in fields(params_cls):
            if f.name in values:
                kwargs[f.name] = _coerce(values[f.name], type(getattr(params_cls(), f.name)))
        sections[section] = params_cls(**kwargs)
    return AppConfig(**sections)


def _coerce(value: Any, target: type) -> Any:
    if not isinstance(value, str) or target is str:
        return value
    if target is bool:
        return value.strip().lower() in ("1", "true", "yes", "on")
    return target(value)
