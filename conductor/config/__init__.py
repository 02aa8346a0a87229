"""Configuration loading and models."""

from .loader import (
    create_default_config,
    get_config_paths,
    load_config,
    save_config,
    validate_config_file,
)
from .models import (
    AgentSettings,
    AgentsConfig,
    ConductorConfig,
    EngineConfig,
    ExitTestsConfig,
    LoggingConfig,
    ProbeConfig,
    RecoveryConfig,
    RetryConfig,
    StoreConfig,
    ValidationConfig,
)

__all__ = [
    "ConductorConfig",
    "EngineConfig",
    "RetryConfig",
    "RecoveryConfig",
    "StoreConfig",
    "LoggingConfig",
    "AgentSettings",
    "AgentsConfig",
    "ProbeConfig",
    "ValidationConfig",
    "ExitTestsConfig",
    "load_config",
    "save_config",
    "create_default_config",
    "validate_config_file",
    "get_config_paths",
]
