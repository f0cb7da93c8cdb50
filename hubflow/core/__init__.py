"""Hubflow Core Module - configuration and logging."""

from hubflow.core.config import (
    AutomationConfig,
    HubflowConfig,
    LoggingConfig,
    get_config,
    reset_config,
    set_config,
)
from hubflow.core.logging import setup_logging

__all__ = [
    "AutomationConfig",
    "HubflowConfig",
    "LoggingConfig",
    "get_config",
    "reset_config",
    "set_config",
    "setup_logging",
]
