"""
Unified configuration access point

    from kafka_e2e.config import load_settings, KafkaConnectionParams

    settings = load_settings()
    params = KafkaConnectionParams.from_settings(settings.kafka)
"""

from .settings import (
    ApplicationSettings,
    CliSettings,
    ControlPlaneSettings,
    DeliverySettings,
    KafkaAuthMethod,
    KafkaSettings,
    LoggingSettings,
    RetrySettings,
    load_settings,
)
from .kafka_config import KafkaClientConfig, KafkaConnectionParams

__all__ = [
    "ApplicationSettings",
    "CliSettings",
    "ControlPlaneSettings",
    "DeliverySettings",
    "KafkaAuthMethod",
    "KafkaSettings",
    "LoggingSettings",
    "RetrySettings",
    "load_settings",
    "KafkaClientConfig",
    "KafkaConnectionParams",
]
