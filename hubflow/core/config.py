"""
Hubflow Configuration

Centralized configuration for the automation runtime with:
- Environment-based configuration
- Type-safe settings with Pydantic
- JSON file load/save
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class LogLevel(str, Enum):
    """Logging levels for Hubflow."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""
    level: LogLevel = LogLevel.INFO
    format: Literal["json", "text"] = "json"


class AutomationConfig(BaseModel):
    """Configuration for the workflow orchestration core."""
    # State manager
    max_history_size: int = Field(default=1000, ge=1)

    # Engine
    max_parallel_tasks: int = Field(default=10, ge=1)
    pause_poll_interval: float = Field(default=0.1, gt=0)

    # Default retry policy (used when neither step nor workflow defines one)
    default_max_attempts: int = Field(default=3, ge=1)
    default_backoff_strategy: Literal[
        "fixed", "linear", "exponential", "fibonacci", "decorrelated_jitter"
    ] = "exponential"
    default_base_delay: float = Field(default=1.0, ge=0)
    default_max_delay: float = Field(default=60.0, ge=0)
    default_backoff_multiplier: float = Field(default=2.0, ge=1.0)

    # Coordinator
    status_refresh_interval: float = Field(default=1.0, gt=0)

    # Command backend
    command_timeout: float = Field(default=30.0, gt=0)

    @field_validator("default_max_delay")
    @classmethod
    def max_delay_not_below_base(cls, v: float, info) -> float:
        """Keep the delay cap at or above the base delay."""
        base = info.data.get("default_base_delay", 0.0)
        return max(v, base)


class HubflowConfig(BaseSettings):
    """
    Main Hubflow Configuration

    Loads configuration from environment variables and/or config files.
    Environment variables are prefixed with HUBFLOW_ (e.g.
    HUBFLOW_AUTOMATION__MAX_HISTORY_SIZE=500).
    """

    instance_id: str = Field(default="hubflow-primary")
    environment: Literal["development", "staging", "production"] = "development"

    automation: AutomationConfig = Field(default_factory=AutomationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {
        "env_prefix": "HUBFLOW_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @classmethod
    def from_file(cls, config_path: Path) -> "HubflowConfig":
        """Load configuration from a JSON file."""
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            config_data = json.load(f)

        return cls(**config_data)

    def to_file(self, config_path: Path) -> None:
        """Save configuration to a JSON file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)


# Global configuration instance (lazy loaded)
_config: Optional[HubflowConfig] = None


def get_config() -> HubflowConfig:
    """Get the global Hubflow configuration instance."""
    global _config
    if _config is None:
        _config = HubflowConfig()
    return _config


def set_config(config: HubflowConfig) -> None:
    """Set the global Hubflow configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration to default."""
    global _config
    _config = None
