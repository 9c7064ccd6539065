"""
Logging configuration and utilities for the savings ledger and relayer.
"""
from .config import configure_from_params, configure_logging, get_logger

__all__ = ["configure_logging", "configure_from_params", "get_logger"]
