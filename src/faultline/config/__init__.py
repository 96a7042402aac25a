"""Configuration loading and validation."""

from faultline.config.loader import (
    AlertsConfig,
    FaultlineConfig,
    IngestionConfig,
    LoggingConfig,
    MetricsConfig,
    ReportingConfig,
    RetryConfig,
    SecurityConfig,
    load_config,
)

__all__ = [
    # Main config
    "load_config",
    "FaultlineConfig",
    # Config sections
    "LoggingConfig",
    "RetryConfig",
    "AlertsConfig",
    "MetricsConfig",
    "SecurityConfig",
    "IngestionConfig",
    "ReportingConfig",
]
