"""
Domain exceptions for the managed Kafka e2e suite
"""

from .base import (
    DomainException,
    ConfigurationError,
    ClassifiedError,
    ApiGenericException,
    ApiUnauthorizedException,
    ApiForbiddenException,
    ApiNotFoundException,
    ApiConflictException,
    ApiTooManyRequestsException,
    ApiUnknownException,
    CliGenericException,
    CliNotFoundException,
    WaitTimeoutError,
    DeliveryTimeoutError,
    DeliveryVerificationError,
    UnusedConsumersError,
    KafkaTransportError,
    KafkaAuthorizationError,
)

__all__ = [
    "DomainException",
    "ConfigurationError",
    "ClassifiedError",
    "ApiGenericException",
    "ApiUnauthorizedException",
    "ApiForbiddenException",
    "ApiNotFoundException",
    "ApiConflictException",
    "ApiTooManyRequestsException",
    "ApiUnknownException",
    "CliGenericException",
    "CliNotFoundException",
    "WaitTimeoutError",
    "DeliveryTimeoutError",
    "DeliveryVerificationError",
    "UnusedConsumersError",
    "KafkaTransportError",
    "KafkaAuthorizationError",
]
