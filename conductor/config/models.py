"""Configuration models for Conductor."""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from conductor.core.models import AgentRole
from conductor.orchestrator.retry_policy import BackoffStrategy, RetryPolicy


class EngineConfig(BaseModel):
    """Control loop configuration."""

    tick_interval: float = Field(default=5.0, description="Seconds between ticks")
    auto_advance: bool = Field(default=True, description="Advance when a phase completes")
    max_parallel_tasks: int = Field(default=1, description="Tasks run together per tick")
    dispatch_order: str = Field(default="priority", description="Order waiting tasks are tried in")
    generate_dashboard: bool = Field(default=True, description="Write dashboard.md after each tick")

    @field_validator("tick_interval")
    @classmethod
    def validate_tick_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("tick_interval must be positive")
        return v

    @field_validator("max_parallel_tasks")
    @classmethod
    def validate_parallel_tasks(cls, v: int) -> int:
        """Validate parallel tasks count."""
        if v < 1:
            raise ValueError("max_parallel_tasks must be at least 1")
        if v > 16:
            raise ValueError("max_parallel_tasks cannot exceed 16")
        return v

    @field_validator("dispatch_order")
    @classmethod
    def validate_dispatch_order(cls, v: str) -> str:
        valid_orders = ["priority", "list"]
        if v not in valid_orders:
            raise ValueError(f"dispatch_order must be one of: {', '.join(valid_orders)}")
        return v


class RetryConfig(BaseModel):
    """Retry and circuit breaker configuration."""

    max_attempts: int = Field(default=5, description="Attempts per task, including the first")
    strategy: BackoffStrategy = Field(
        default=BackoffStrategy.EXPONENTIAL, description="Backoff strategy"
    )
    base_delay: float = Field(default=1.0, description="First retry delay in seconds")
    max_delay: float = Field(default=16.0, description="Maximum delay in seconds")
    jitter: float = Field(default=0.0, description="Random spread as a fraction of the delay")
    circuit_breaker_threshold: int = Field(
        default=10, description="Failed calls before the breaker opens"
    )
    reset_timeout: float = Field(
        default=300.0, description="Seconds before an open breaker allows a trial call"
    )
    breaker_scope: str = Field(default="role", description="One breaker per role or per task")

    @field_validator("max_attempts", "circuit_breaker_threshold")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator("base_delay", "reset_timeout")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    @field_validator("jitter")
    @classmethod
    def validate_jitter(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("jitter must be between 0 and 1")
        return v

    @field_validator("breaker_scope")
    @classmethod
    def validate_breaker_scope(cls, v: str) -> str:
        valid_scopes = ["role", "task"]
        if v not in valid_scopes:
            raise ValueError(f"breaker_scope must be one of: {', '.join(valid_scopes)}")
        return v

    @model_validator(mode="after")
    def validate_delays(self) -> "RetryConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must not be less than base_delay")
        return self

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            strategy=self.strategy,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter=self.jitter,
            circuit_breaker_threshold=self.circuit_breaker_threshold,
            reset_timeout=self.reset_timeout,
        )


class RecoveryConfig(BaseModel):
    """Checkpoint configuration."""

    max_checkpoints: int = Field(default=10, description="Checkpoint ring buffer size")
    persist_checkpoints: bool = Field(
        default=True, description="Mirror checkpoints to the state directory"
    )

    @field_validator("max_checkpoints")
    @classmethod
    def validate_max_checkpoints(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_checkpoints must be at least 1")
        return v


class StoreConfig(BaseModel):
    """State store configuration."""

    state_dir: str = Field(default=".conductor", description="State directory")
    error_log_cap: int = Field(default=100, description="Error entries kept in state")
    progress_history_cap: int = Field(default=1000, description="Progress snapshots kept")

    @field_validator("error_log_cap", "progress_history_cap")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate positive integers."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log file format")
    output_dir: str = Field(default=".conductor/logs", description="Log output directory")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "text"]
        if v not in valid_formats:
            raise ValueError(f"format must be one of: {', '.join(valid_formats)}")
        return v


class AgentSettings(BaseModel):
    """Settings for one agent role."""

    enabled: bool = Field(default=True, description="Register the agent")
    command: Optional[str] = Field(
        default=None, description="Command run per task (dry run when unset)"
    )
    timeout: int = Field(default=1800, description="Command timeout in seconds")
    design_docs: List[str] = Field(
        default_factory=list, description="Documents scanned by the security agent"
    )

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timeout must be positive")
        return v


class AgentsConfig(BaseModel):
    """Per-role agent settings, keyed by the role's short name."""

    models: AgentSettings = Field(default_factory=AgentSettings)
    api: AgentSettings = Field(default_factory=AgentSettings)
    test: AgentSettings = Field(default_factory=AgentSettings)
    realtime: AgentSettings = Field(default_factory=AgentSettings)
    quality: AgentSettings = Field(default_factory=AgentSettings)
    integration: AgentSettings = Field(default_factory=AgentSettings)
    security: AgentSettings = Field(
        default_factory=lambda: AgentSettings(design_docs=["docs/**/*.md"])
    )

    def for_role(self, role: AgentRole) -> AgentSettings:
        return getattr(self, role.short_name)


class ProbeConfig(BaseModel):
    """A validation probe added from configuration."""

    phase: int = Field(..., description="Phase of the milestone")
    milestone: str = Field(..., description="Milestone id")
    type: str = Field(..., description="command, http or test")
    target: str = Field(..., description="Command, URL or test target")
    expect: Optional[str] = Field(
        default=None, description="Expected stdout substring or JSON field=value"
    )
    timeout: int = Field(default=60, description="Probe timeout in seconds")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        valid_types = ["command", "http", "test"]
        if v not in valid_types:
            raise ValueError(f"type must be one of: {', '.join(valid_types)}")
        return v


class ValidationConfig(BaseModel):
    """Milestone validation configuration."""

    default_probes: bool = Field(default=True, description="Install the standard probe table")
    base_url: str = Field(
        default="http://localhost:3000", description="Base URL of the service being built"
    )
    test_command: str = Field(
        default="npm test -- {target}", description="Command template for test probes"
    )
    probes: List[ProbeConfig] = Field(default_factory=list, description="Extra probes")

    @field_validator("test_command")
    @classmethod
    def validate_test_command(cls, v: str) -> str:
        if "{target}" not in v:
            raise ValueError("test_command must contain '{target}'")
        return v


class ExitTestsConfig(BaseModel):
    """Phase exit test configuration."""

    enabled: bool = Field(default=True, description="Run exit tests before advancing")
    working_dir: str = Field(default=".", description="Directory exit tests run in")
    timeout: int = Field(default=1800, description="Exit test timeout in seconds")


class ConductorConfig(BaseModel):
    """Main Conductor configuration."""

    engine: EngineConfig = Field(default_factory=EngineConfig, description="Engine configuration")
    retry: RetryConfig = Field(default_factory=RetryConfig, description="Retry configuration")
    recovery: RecoveryConfig = Field(
        default_factory=RecoveryConfig, description="Recovery configuration"
    )
    store: StoreConfig = Field(default_factory=StoreConfig, description="Store configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    agents: AgentsConfig = Field(default_factory=AgentsConfig, description="Agent configuration")
    validation: ValidationConfig = Field(
        default_factory=ValidationConfig, description="Milestone validation configuration"
    )
    exit_tests: ExitTestsConfig = Field(
        default_factory=ExitTestsConfig, description="Exit test configuration"
    )

    def get_state_dir(self, base: Optional[Path] = None) -> Path:
        """Get the state directory, relative paths taken from ``base``."""
        return _resolve_path(self.store.state_dir, base)

    def get_log_dir(self, base: Optional[Path] = None) -> Path:
        """Get the log directory as a Path object."""
        return _resolve_path(self.logging.output_dir, base)

    def get_working_dir(self, base: Optional[Path] = None) -> Path:
        """Get the exit test working directory as a Path object."""
        return _resolve_path(self.exit_tests.working_dir, base)


def _resolve_path(value: str, base: Optional[Path]) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = (base or Path.cwd()) / path
    return path.resolve()


def resolve_env_vars(obj: Any) -> Any:
    """Recursively resolve ``${VAR}`` and ``${VAR:default}`` in configuration data."""
    if isinstance(obj, dict):
        return {key: resolve_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [resolve_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return _resolve_env_var_string(obj)
    else:
        return obj


def _resolve_env_var_string(value: str) -> str:
    """Resolve environment variables in a string."""
    # Pattern for ${VAR_NAME} or ${VAR_NAME:default_value}
    pattern = r"\$\{([^}:]+)(?::([^}]*))?\}"

    def replace_var(match: "re.Match[str]") -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return os.getenv(var_name, default_value)

    return re.sub(pattern, replace_var, value)
