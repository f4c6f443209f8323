"""
Service clients of the managed Kafka e2e suite

Import services by their module path:
- kafka_e2e.services.kafka_clients
- kafka_e2e.services.kafka_admin
- kafka_e2e.services.consumer_pool
- kafka_e2e.services.message_delivery
- kafka_e2e.services.kafka_mgmt_api
- kafka_e2e.services.kafka_mgmt_utils
- kafka_e2e.services.cli
"""

__all__ = []
