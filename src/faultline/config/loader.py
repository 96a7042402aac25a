"""Configuration loader for faultline.

Loads a YAML configuration file, applies ``FAULTLINE_*`` environment
overrides and validates the result against Pydantic models.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from faultline.alerts import WebhookConfig
from faultline.errors import ConfigurationError
from faultline.ingestion import ERROR_RATE_THRESHOLD
from faultline.retry import RetryPolicy
from faultline.security import CSRF_TTL_SECONDS

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "FAULTLINE_LOG_LEVEL": ("logging", "level"),
    "FAULTLINE_LOG_FORMAT": ("logging", "format"),
    "FAULTLINE_CSRF_SECRET": ("security", "csrf_secret"),
}


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field(default="console", pattern=r"^(json|console)$")
    file: Optional[Path] = Field(default=None)


class RetryConfig(BaseModel):
    """Default retry policy for fallible work."""

    max_attempts: int = Field(default=3, ge=1, le=20)
    base_delay: float = Field(default=1.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    retry_all: bool = Field(default=False, description="Retry every failure, not only transient ones")

    def to_policy(self) -> RetryPolicy:
        kwargs: Dict[str, Any] = {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "backoff_multiplier": self.backoff_multiplier,
            "max_delay": self.max_delay,
        }
        if self.retry_all:
            kwargs["retry_on"] = None
        return RetryPolicy(**kwargs)


class AlertsConfig(BaseModel):
    """Escalation channel configuration."""

    immediate_webhooks: List[WebhookConfig] = Field(default_factory=list)
    deferred_webhooks: List[WebhookConfig] = Field(default_factory=list)
    log_channel: bool = Field(default=True, description="Also escalate to the log channel")
    channel_timeout: float = Field(default=10.0, gt=0, le=120)
    channel_max_attempts: int = Field(default=3, ge=1, le=10, description="Overrides retry.max_attempts for channel sends")
    max_recent: int = Field(default=500, ge=1)


class MetricsConfig(BaseModel):
    """Metrics collector configuration."""

    max_samples: int = Field(default=100_000, ge=100)


class SecurityConfig(BaseModel):
    """CSRF issuer configuration."""

    csrf_secret: Optional[str] = Field(default=None)
    csrf_ttl_seconds: int = Field(default=CSRF_TTL_SECONDS, ge=60)


class IngestionConfig(BaseModel):
    """Client log ingestion configuration."""

    error_rate_threshold: int = Field(default=ERROR_RATE_THRESHOLD, ge=1)


class ReportingConfig(BaseModel):
    """Error reporter configuration."""

    max_reports: int = Field(default=100, ge=1)


class FaultlineConfig(BaseModel):
    """Complete faultline configuration."""

    model_config = {"extra": "forbid"}

    version: str = Field(default="1.0")
    environment: str = Field(default="development")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)


def load_config(
    path: Optional[Union[Path, str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> FaultlineConfig:
    """Load configuration from a YAML file.

    Args:
        path: YAML file. ``None`` starts from defaults.
        env: Environment mapping for overrides (defaults to ``os.environ``).

    Returns:
        Validated FaultlineConfig object.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Config file not found: {path}", details={"path": str(path)})
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}", details={"path": str(path)}) from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {path}", details={"path": str(path)})

    _deep_merge(data, _env_overrides(os.environ if env is None else env))

    try:
        return FaultlineConfig(**data)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid configuration",
            details={"errors": [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]},
        ) from e


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            overrides.setdefault(section, {})[key] = value.upper() if key == "level" else value
    return overrides


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base dictionary."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
