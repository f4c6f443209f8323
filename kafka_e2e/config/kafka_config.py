"""
Kafka client configuration for the managed Kafka e2e suite

Builds the librdkafka configuration dictionaries used by producers,
consumers and admin clients. Authentication is either SASL/PLAIN with the
service account credentials or SASL/OAUTHBEARER with an OIDC token endpoint.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from kafka_e2e.config.settings import KafkaAuthMethod, KafkaSettings
from kafka_e2e.exceptions import ConfigurationError


@dataclass(frozen=True)
class KafkaConnectionParams:
    """Everything needed to open a client connection to one Kafka instance"""
    bootstrap_servers: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    auth_method: KafkaAuthMethod = KafkaAuthMethod.OAUTH
    token_endpoint_url: Optional[str] = None
    security_protocol: str = "SASL_SSL"
    ssl_ca_location: Optional[str] = None
    insecure_tls: bool = False

    @classmethod
    def from_settings(cls, settings: KafkaSettings) -> "KafkaConnectionParams":
        return cls(
            bootstrap_servers=settings.bootstrap_servers,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            auth_method=settings.auth_method,
            token_endpoint_url=settings.token_endpoint_url,
            security_protocol=settings.security_protocol,
            ssl_ca_location=settings.ssl_ca_location,
            insecure_tls=settings.insecure_tls,
        )

    @property
    def authenticated(self) -> bool:
        return bool(self.client_id)


class KafkaClientConfig:
    """
    librdkafka configuration builder

    Producers favour durability (acks=all, idempotence) since a lost message
    is reported as a delivery failure by the suite.
    """

    @staticmethod
    def get_security_config(params: KafkaConnectionParams) -> Dict[str, Any]:
        """
        Get the security part of a client configuration

        Args:
            params: Connection parameters

        Returns:
            Security configuration dictionary (empty for unauthenticated brokers)
        """
        if not params.authenticated:
            return {}

        if not params.client_secret:
            raise ConfigurationError(
                "client secret is required for authenticated connections",
                details={"bootstrap_servers": params.bootstrap_servers}
            )

        config: Dict[str, Any] = {
            'security.protocol': params.security_protocol,
        }

        if params.auth_method == KafkaAuthMethod.PLAIN:
            config.update({
                'sasl.mechanism': 'PLAIN',
                'sasl.username': params.client_id,
                'sasl.password': params.client_secret,
            })
        elif params.auth_method == KafkaAuthMethod.OAUTH:
            if not params.token_endpoint_url:
                raise ConfigurationError(
                    "token endpoint url is required for the oauth auth method",
                    details={"bootstrap_servers": params.bootstrap_servers}
                )
            config.update({
                'sasl.mechanism': 'OAUTHBEARER',
                'sasl.oauthbearer.method': 'oidc',
                'sasl.oauthbearer.client.id': params.client_id,
                'sasl.oauthbearer.client.secret': params.client_secret,
                'sasl.oauthbearer.token.endpoint.url': params.token_endpoint_url,
            })
        else:
            raise ConfigurationError(f"unsupported auth method: {params.auth_method}")

        if params.ssl_ca_location:
            config['ssl.ca.location'] = params.ssl_ca_location
        if params.insecure_tls:
            config['enable.ssl.certificate.verification'] = False

        return config

    @staticmethod
    def get_producer_config(
        params: KafkaConnectionParams,
        client_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Get producer configuration

        Args:
            params: Connection parameters
            client_id: Client id reported to the broker

        Returns:
            Producer configuration dictionary
        """
        config = {
            'bootstrap.servers': params.bootstrap_servers,
            'client.id': client_id or f'mk-e2e-producer-{uuid.uuid4().hex[:8]}',

            # Durability settings
            'acks': 'all',
            'enable.idempotence': True,

            # Error handling
            'delivery.timeout.ms': 120000,  # 2 minutes total timeout
            'request.timeout.ms': 30000,
        }
        config.update(KafkaClientConfig.get_security_config(params))
        return config

    @staticmethod
    def get_consumer_config(
        params: KafkaConnectionParams,
        group_id: str,
        offset_reset: str = "latest",
        client_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Get consumer configuration

        Args:
            params: Connection parameters
            group_id: Consumer group ID
            offset_reset: auto.offset.reset policy for partitions without committed offsets
            client_id: Client id reported to the broker

        Returns:
            Consumer configuration dictionary
        """
        config = {
            'bootstrap.servers': params.bootstrap_servers,
            'group.id': group_id,
            'client.id': client_id or f'{group_id}-consumer',

            # Offset management
            'enable.auto.commit': True,
            'auto.offset.reset': offset_reset,

            # Session management
            'session.timeout.ms': 45000,
            'heartbeat.interval.ms': 3000,
            'max.poll.interval.ms': 300000,

            # Performance
            'fetch.wait.max.ms': 500,
        }
        config.update(KafkaClientConfig.get_security_config(params))
        return config

    @staticmethod
    def get_admin_config(params: KafkaConnectionParams) -> Dict[str, Any]:
        """
        Get admin client configuration for topic management

        Returns:
            Admin configuration dictionary
        """
        config = {
            'bootstrap.servers': params.bootstrap_servers,
            'client.id': 'mk-e2e-admin',
            'request.timeout.ms': 30000,
        }
        config.update(KafkaClientConfig.get_security_config(params))
        return config
