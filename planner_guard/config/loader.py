"""
Configuration management and loading.

Handles planner guard settings from YAML files and environment variables.
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import yaml

CONFIG_ENV_VAR = "PLANNER_GUARD_CONFIG"
MODEL_ENV_VAR = "OPENAI_MODEL"

T = TypeVar("T")


@dataclass(frozen=True)
class RateLimitConfig:
    """Sliding window and abuse escalation policy."""
    window_minutes: float = 15
    max_requests: int = 20
    suspicion_threshold: int = 5
    block_minutes: float = 60
    max_request_rate_per_second: float = 2.0

    def __post_init__(self):
        """Validate rate limit values are positive."""
        if self.window_minutes <= 0:
            raise ValueError("window_minutes must be > 0")
        if self.max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if self.suspicion_threshold <= 0:
            raise ValueError("suspicion_threshold must be > 0")
        if self.block_minutes <= 0:
            raise ValueError("block_minutes must be > 0")
        if self.max_request_rate_per_second <= 0:
            raise ValueError("max_request_rate_per_second must be > 0")

    @property
    def window_seconds(self) -> float:
        return self.window_minutes * 60

    @property
    def block_seconds(self) -> float:
        return self.block_minutes * 60


@dataclass(frozen=True)
class TokenConfig:
    """Token ceilings and estimation constants."""
    max_conversation_tokens: int = 8000
    max_response_tokens: int = 2000
    chars_per_token: int = 4
    per_message_overhead: int = 4
    conversation_overhead: int = 10

    def __post_init__(self):
        """Validate token values."""
        if self.max_conversation_tokens <= 0:
            raise ValueError("max_conversation_tokens must be > 0")
        if self.max_response_tokens <= 0:
            raise ValueError("max_response_tokens must be > 0")
        if self.chars_per_token <= 0:
            raise ValueError("chars_per_token must be > 0")
        if self.per_message_overhead < 0:
            raise ValueError("per_message_overhead must be >= 0")
        if self.conversation_overhead < 0:
            raise ValueError("conversation_overhead must be >= 0")


@dataclass(frozen=True)
class AIConfig:
    """Completion provider models, timeouts and retry policy."""
    primary_model: str = "gpt-4-turbo-preview"
    fallback_model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_base_ms: int = 1000
    backoff_max_ms: int = 10000

    def __post_init__(self):
        """Validate model names and retry policy."""
        if not self.primary_model or not self.primary_model.strip():
            raise ValueError("primary_model is required and cannot be empty")
        if not self.fallback_model or not self.fallback_model.strip():
            raise ValueError("fallback_model is required and cannot be empty")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_retries <= 0:
            raise ValueError("max_retries must be > 0")
        if self.backoff_base_ms < 0:
            raise ValueError("backoff_base_ms must be >= 0")
        if self.backoff_max_ms < self.backoff_base_ms:
            raise ValueError("backoff_max_ms must be >= backoff_base_ms")


@dataclass(frozen=True)
class ValidationConfig:
    """Message length bounds."""
    min_message_length: int = 5
    max_message_length: int = 2000

    def __post_init__(self):
        if self.min_message_length < 0:
            raise ValueError("min_message_length must be >= 0")
        if self.max_message_length < self.min_message_length:
            raise ValueError("max_message_length must be >= min_message_length")


@dataclass(frozen=True)
class UsageConfig:
    """Conversation allowances per plan."""
    free_conversations: int = 10
    paid_conversations: int = 50

    def __post_init__(self):
        if self.free_conversations < 0:
            raise ValueError("free_conversations must be >= 0")
        if self.paid_conversations < 0:
            raise ValueError("paid_conversations must be >= 0")


@dataclass(frozen=True)
class PlannerConfig:
    """Complete planner guard configuration."""
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    tokens: TokenConfig = field(default_factory=TokenConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    usage: UsageConfig = field(default_factory=UsageConfig)


_SECTIONS: Dict[str, Type[Any]] = {
    "rate_limit": RateLimitConfig,
    "tokens": TokenConfig,
    "ai": AIConfig,
    "validation": ValidationConfig,
    "usage": UsageConfig,
}


def load_planner_config(path: Optional[str] = None) -> PlannerConfig:
    """Load and validate planner configuration from a YAML file.

    Every section is optional and falls back to defaults. Unknown keys at
    any level are rejected so a typo never silently loosens a limit.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated PlannerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return _apply_env_overrides(PlannerConfig())

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Planner config file not found: {path}")

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _parse_section(raw_config[name], cls, name)
        for name, cls in _SECTIONS.items()
        if name in raw_config
    }
    return _apply_env_overrides(PlannerConfig(**sections))


def resolve_config_path(path: Optional[str]) -> Optional[str]:
    """Explicit path wins, then the environment variable, then None."""
    if path:
        return path
    return os.environ.get(CONFIG_ENV_VAR) or None


def _parse_section(data: Any, cls: Type[T], path: str) -> T:
    """Parse one section into its dataclass.

    Args:
        data: Section data from YAML
        cls: Target dataclass type
        path: Section name for error messages

    Returns:
        Validated section dataclass

    Raises:
        ValueError: If the section is malformed
    """
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    allowed = {f.name: f for f in fields(cls)}
    unknown_keys = set(data.keys()) - set(allowed)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        expected = allowed[key].type
        if expected is str:
            if not isinstance(value, str):
                raise ValueError(f"'{key}' in {path} must be a string")
        elif isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{key}' in {path} must be a number")
        elif expected is int and not float(value).is_integer():
            raise ValueError(f"'{key}' in {path} must be an integer")
        elif expected is int:
            value = int(value)
        values[key] = value

    return cls(**values)


def _apply_env_overrides(config: PlannerConfig) -> PlannerConfig:
    model = os.environ.get(MODEL_ENV_VAR)
    if model and model.strip():
        return replace(config, ai=replace(config.ai, primary_model=model.strip()))
    return config
