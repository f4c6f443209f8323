"""
Kafka admin client for topic provisioning over the data plane.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from confluent_kafka import KafkaError, KafkaException
from confluent_kafka.admin import AdminClient, NewTopic

from kafka_e2e.config.kafka_config import KafkaClientConfig, KafkaConnectionParams
from kafka_e2e.services.kafka_clients import _KafkaClient, kafka_error_to_exception

logger = logging.getLogger(__name__)


class KafkaAdmin(_KafkaClient):
    """Creates and deletes topics; an existing topic counts as created"""

    def __init__(
        self,
        params: KafkaConnectionParams,
        request_timeout: float = 30.0,
        admin_factory: Callable[[Dict[str, Any]], Any] = AdminClient,
    ) -> None:
        super().__init__("kafka-admin")
        self.request_timeout = request_timeout
        self._admin = admin_factory(KafkaClientConfig.get_admin_config(params))

    async def list_topics(self) -> List[str]:
        metadata = await self._call(self._admin.list_topics, timeout=self.request_timeout, operation="list topics")
        return sorted(name for name in metadata.topics if not name.startswith("__"))

    async def apply_topics(self, topics: Iterable[str], partitions: int = 1, replication_factor: int = -1,
                           config: Optional[Dict[str, str]] = None) -> List[str]:
        """
        Create every missing topic

        Returns:
            Names of the topics created by this call
        """
        new_topics = [
            NewTopic(name, num_partitions=partitions, replication_factor=replication_factor, config=config or {})
            for name in topics
        ]
        if not new_topics:
            return []

        def _create() -> List[str]:
            created = []
            futures = self._admin.create_topics(new_topics, request_timeout=self.request_timeout)
            for name, future in futures.items():
                try:
                    future.result()
                    created.append(name)
                except KafkaException as e:
                    error = e.args[0] if e.args else None
                    if isinstance(error, KafkaError) and error.code() == KafkaError.TOPIC_ALREADY_EXISTS:
                        logger.info(f"topic '{name}' already exists")
                        continue
                    raise kafka_error_to_exception(error or e, operation=f"create topic {name}") from e
            return created

        created = await self._call(_create, operation="create topics")
        if created:
            logger.info(f"created topics: {created}")
        return created

    async def create_topic(self, name: str, partitions: int = 1, config: Optional[Dict[str, str]] = None) -> bool:
        return bool(await self.apply_topics([name], partitions=partitions, config=config))

    async def delete_topic(self, name: str) -> bool:
        """Delete ``name``; returns False when the topic does not exist"""
        def _delete() -> bool:
            future = self._admin.delete_topics([name], operation_timeout=self.request_timeout)[name]
            try:
                future.result()
            except KafkaException as e:
                error = e.args[0] if e.args else None
                if isinstance(error, KafkaError) and error.code() == KafkaError.UNKNOWN_TOPIC_OR_PART:
                    return False
                raise kafka_error_to_exception(error or e, operation=f"delete topic {name}") from e
            return True

        deleted = await self._call(_delete, operation=f"delete topic {name}")
        if deleted:
            logger.info(f"deleted topic '{name}'")
        return deleted

    async def close(self) -> None:
        self._closed = True
        self._executor.shutdown(wait=False)
