"""
Configuration management.

Settings come from, in decreasing precedence: keyword overrides, a YAML
file, environment variables prefixed with ``TOOLLOOP_`` (nested sections
use ``__``, e.g. ``TOOLLOOP_RETRY__MAX_ATTEMPTS=6``) and the defaults below.
"""

from pathlib import Path
from typing import Any, List

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolloop.core.domain.errors import ConfigurationError


class ModelSettings(BaseModel):
    """Model provider settings."""

    name: str = Field(default="gpt-4.1", description="Model identifier passed to litellm")
    api_key_env: str = Field(default="OPENAI_API_KEY", description="Env var holding the API key")
    api_base: str | None = Field(default=None, description="Optional custom endpoint")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, gt=0)
    timeout: float = Field(default=120.0, gt=0, description="Request timeout in seconds")


class RetrySettings(BaseModel):
    """Bounded exponential backoff for transient transport failures."""

    max_attempts: int = Field(default=4, ge=1, description="Attempts per turn including the first")
    initial_delay: float = Field(default=1.0, ge=0.0, description="Delay before the first retry")
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0.0, description="Upper bound for a single delay")
    retry_on_errors: List[str] = Field(
        default_factory=lambda: [
            "RateLimitError",
            "APIConnectionError",
            "Timeout",
            "APITimeoutError",
            "ServiceUnavailableError",
            "InternalServerError",
        ],
        description="Provider exception type names treated as transient",
    )
    auth_errors: List[str] = Field(
        default_factory=lambda: ["AuthenticationError", "PermissionDeniedError"],
        description="Provider exception type names treated as credential failures",
    )

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return min(self.initial_delay * (self.backoff_multiplier ** attempt), self.max_delay)


class ApprovalSettings(BaseModel):
    policy: str = Field(default="prompt", description="prompt, auto_approve or auto_deny")
    timeout_seconds: float = Field(default=300.0, gt=0, description="Unanswered approvals count as rejected")

    @field_validator("policy")
    @classmethod
    def _known_policy(cls, value: str) -> str:
        if value not in ("prompt", "auto_approve", "auto_deny"):
            raise ValueError(f"unknown approval policy: {value}")
        return value


class ExecutorSettings(BaseModel):
    max_turns: int = Field(default=50, ge=1)
    max_consecutive_no_tool_turns: int = Field(default=3, ge=1)
    tool_timeout_seconds: float = Field(default=120.0, gt=0)
    parallel_read_only_tools: bool = False


class StateSettings(BaseModel):
    store_dir: str = Field(default=".toolloop/tasks", description="Directory for task records")
    interested_files_capacity: int = Field(default=50, ge=1)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class ToolloopSettings(BaseSettings):
    """Runtime configuration with environment variable support."""

    model: ModelSettings = Field(default_factory=ModelSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    approval: ApprovalSettings = Field(default_factory=ApprovalSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    workspace_root: str = Field(default=".", description="Root directory handed to tool runners")

    model_config = SettingsConfigDict(
        env_prefix="TOOLLOOP_",
        env_nested_delimiter="__",
        case_sensitive=False,
        protected_namespaces=(),
    )

    @classmethod
    def load_from_file(cls, config_path: Path) -> "ToolloopSettings":
        """Load settings from a YAML configuration file."""
        return load_settings(config_path)

    def save_to_file(self, config_path: Path) -> None:
        """Save settings to a YAML configuration file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False, indent=2, sort_keys=False)


def load_settings(config_path: str | Path | None = None, **overrides: Any) -> ToolloopSettings:
    """
    Build settings from an optional YAML file plus keyword overrides.

    A missing file yields defaults (still subject to environment overrides).

    Raises:
        ConfigurationError: If the YAML is unreadable or a value is invalid
    """
    data: dict[str, Any] = {}
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigurationError(f"Config file {path} must contain a mapping")

    _deep_update(data, overrides)
    try:
        return ToolloopSettings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_update(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base
