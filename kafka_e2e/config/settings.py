"""
Centralized configuration for the managed Kafka e2e suite

Type-safe settings built with Pydantic Settings. Every settings object is
frozen and is passed explicitly to the component that needs it; nothing in
the suite reads the environment implicitly after ``load_settings()``.
"""

import os
from enum import Enum
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _settings_config(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env" if not os.getenv("DOCKER_CONTAINER") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )


class KafkaAuthMethod(str, Enum):
    """Mutually exclusive SASL mechanisms supported by the managed service"""
    PLAIN = "plain"
    OAUTH = "oauth"


class KafkaSettings(BaseSettings):
    """Data plane (Kafka bootstrap + credentials) settings"""

    model_config = _settings_config("KAFKA_")

    bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Kafka bootstrap host[:port] of the instance under test"
    )
    auth_method: KafkaAuthMethod = Field(
        default=KafkaAuthMethod.OAUTH,
        description="SASL mechanism used by producers and consumers"
    )
    client_id: Optional[str] = Field(
        default=None,
        description="Service account client id (SASL username for PLAIN)"
    )
    client_secret: Optional[str] = Field(
        default=None,
        description="Service account client secret (SASL password for PLAIN)"
    )
    token_endpoint_url: Optional[str] = Field(
        default=None,
        description="OIDC token endpoint used by the OAUTHBEARER mechanism"
    )
    security_protocol: str = Field(
        default="SASL_SSL",
        description="librdkafka security.protocol"
    )
    ssl_ca_location: Optional[str] = Field(
        default=None,
        description="CA bundle for the broker certificates"
    )
    insecure_tls: bool = Field(
        default=False,
        description="Disable broker certificate verification"
    )

    @model_validator(mode="after")
    def _check_oauth(self):
        if self.auth_method == KafkaAuthMethod.OAUTH and self.client_id and not self.token_endpoint_url:
            raise ValueError("KAFKA_TOKEN_ENDPOINT_URL is required when KAFKA_AUTH_METHOD=oauth")
        return self


class ControlPlaneSettings(BaseSettings):
    """Management REST API settings"""

    model_config = _settings_config("CONTROL_PLANE_")

    api_base_url: str = Field(
        default="https://api.stage.openshift.com",
        description="Base URL of the Kafka management API"
    )
    kafka_instance_api_template: str = Field(
        default="https://admin-server-{host}/rest",
        description="Instance admin API URL template, formatted with the bootstrap host name"
    )
    access_token: Optional[str] = Field(
        default=None,
        description="Bearer token sent to the control plane"
    )
    request_timeout: float = Field(
        default=60.0,
        description="HTTP request timeout in seconds"
    )


class CliSettings(BaseSettings):
    """CLI binary settings"""

    model_config = _settings_config("CLI_")

    binary: Optional[str] = Field(
        default=None,
        description="Path to an already downloaded CLI binary"
    )
    default_timeout: float = Field(
        default=180.0,
        description="Maximum runtime of a single CLI command in seconds"
    )
    verbose: bool = Field(
        default=True,
        description="Pass -v so HTTP status codes are visible in the output"
    )


class RetrySettings(BaseSettings):
    """Retry policy settings"""

    model_config = _settings_config("RETRY_")

    default_max_attempts: int = Field(
        default=1,
        ge=0,
        description="Retries after the first attempt for API/CLI calls"
    )
    default_delay: float = Field(
        default=1.0,
        ge=0,
        description="Initial backoff delay in seconds"
    )
    default_backoff: str = Field(
        default="exponential",
        description="Backoff strategy: fixed, linear or exponential"
    )
    default_max_delay: float = Field(
        default=30.0,
        ge=0,
        description="Upper bound of a single backoff delay in seconds"
    )
    retry_unclassified_errors: bool = Field(
        default=True,
        description="Treat errors of unknown kind as transient in the API classifier"
    )
    creation_max_attempts: int = Field(
        default=12,
        ge=0,
        description="Retries for resource creation hitting capacity contention"
    )
    creation_delay: float = Field(
        default=10.0,
        ge=0,
        description="Fixed delay between resource creation retries"
    )


class DeliverySettings(BaseSettings):
    """Message delivery verification settings"""

    model_config = _settings_config("DELIVERY_")

    timeout: float = Field(
        default=180.0,
        gt=0,
        description="Time limit for producing and consuming all messages"
    )
    message_count: int = Field(
        default=100,
        ge=0,
        description="Default number of messages per delivery test"
    )
    min_message_size: int = Field(
        default=10,
        ge=0,
        description="Minimum random message length"
    )
    max_message_size: int = Field(
        default=100,
        ge=0,
        description="Maximum random message length"
    )
    assignment_poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Interval between partition assignment checks"
    )
    assignment_timeout: float = Field(
        default=120.0,
        gt=0,
        description="Time limit for a consumer to receive its partition assignment"
    )
    poll_timeout: float = Field(
        default=1.0,
        gt=0,
        description="Timeout of a single consumer poll call"
    )
    consumer_group_prefix: str = Field(
        default="mk-e2e",
        description="Prefix for generated consumer group ids"
    )

    @model_validator(mode="after")
    def _check_sizes(self):
        if self.min_message_size > self.max_message_size:
            raise ValueError("min_message_size must not exceed max_message_size")
        return self


class LoggingSettings(BaseSettings):
    """Logging settings"""

    model_config = _settings_config("LOG_")

    level: str = Field(
        default="INFO",
        description="Root log level"
    )


class ApplicationSettings(BaseSettings):
    """Aggregates all suite settings"""

    model_config = _settings_config("")

    kafka: KafkaSettings = Field(default_factory=KafkaSettings)
    control_plane: ControlPlaneSettings = Field(default_factory=ControlPlaneSettings)
    cli: CliSettings = Field(default_factory=CliSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings() -> ApplicationSettings:
    """
    Build a fresh settings instance from the environment

    Returns:
        ApplicationSettings: immutable settings to pass into components
    """
    return ApplicationSettings()
