"""
Pool of independent consumers sharing one consumer group

Each member is a separately connected consumer, so the broker assigns and
rebalances partitions across the members exactly as it would across
independently deployed consumer processes.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Callable, Dict, List

from kafka_e2e.config.kafka_config import KafkaConnectionParams
from kafka_e2e.models.messaging import DeliveryRecord
from kafka_e2e.services.kafka_clients import KafkaConsumerClient, connect_consumer
from kafka_e2e.utils.tasks import join_all

logger = logging.getLogger(__name__)


class ConsumerPool:
    """
    Fixed-size set of consumers created once and torn down together

    Build pools with ``ConsumerPool.connect``; when a member cannot be
    created the members already connected are closed before the error
    propagates.
    """

    def __init__(self, group_id: str, consumers: List[KafkaConsumerClient]) -> None:
        if not consumers:
            raise ValueError("a consumer pool needs at least one consumer")
        self.group_id = group_id
        self._consumers = list(consumers)

    @classmethod
    async def connect(
        cls,
        params: KafkaConnectionParams,
        group_id: str,
        pool_size: int,
        poll_timeout: float = 1.0,
        consumer_factory: Callable[..., KafkaConsumerClient] = connect_consumer,
    ) -> "ConsumerPool":
        if pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {pool_size}")

        consumers: List[KafkaConsumerClient] = []
        try:
            for index in range(pool_size):
                consumers.append(
                    consumer_factory(
                        params,
                        group_id,
                        offset_reset="latest",
                        consumer_id=f"{group_id}-{index}",
                        poll_timeout=poll_timeout,
                    )
                )
        except BaseException:
            logger.error(f"failed to create consumer {len(consumers)} of pool {group_id}, "
                         f"closing {len(consumers)} connected consumers")
            results = await asyncio.gather(*(c.close() for c in consumers), return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.error(f"failed to close consumer of pool {group_id}: {result}")
            raise

        logger.info(f"created consumer pool {group_id} with {pool_size} consumers")
        return cls(group_id, consumers)

    @property
    def consumers(self) -> List[KafkaConsumerClient]:
        return list(self._consumers)

    @property
    def consumer_ids(self) -> List[str]:
        return [consumer.consumer_id for consumer in self._consumers]

    def __len__(self) -> int:
        return len(self._consumers)

    async def reset_all_to_end(self, topic: str) -> None:
        """Move every member past the current end of ``topic``"""
        await join_all(*(consumer.reset_to_end(topic) for consumer in self._consumers))

    async def subscribe_all(self, topic: str) -> None:
        logger.info(f"subscribing all {len(self._consumers)} consumers of {self.group_id} to {topic}")
        await join_all(*(consumer.subscribe(topic) for consumer in self._consumers))

    async def consume_all(self, expected_total_count: int) -> List[DeliveryRecord]:
        """
        Consume concurrently on every member until the records received by
        all members together reach ``expected_total_count``.

        A failing member cancels the others and its error is raised.
        """
        records: List[DeliveryRecord] = []
        reached = asyncio.Event()
        if expected_total_count <= 0:
            reached.set()

        async def _consume(consumer: KafkaConsumerClient) -> None:
            while not reached.is_set():
                batch = await consumer.poll()
                if not batch:
                    continue
                records.extend(batch)
                logger.debug(f"consumer {consumer.consumer_id} received {len(batch)} records "
                             f"({len(records)}/{expected_total_count})")
                if len(records) >= expected_total_count:
                    reached.set()

        await join_all(*(_consume(consumer) for consumer in self._consumers))
        logger.info(f"consumer pool {self.group_id} received {len(records)} records")
        return records

    def records_per_consumer(self, records: List[DeliveryRecord]) -> Dict[str, int]:
        counts = Counter(record.consumer_id for record in records)
        return {consumer_id: counts.get(consumer_id, 0) for consumer_id in self.consumer_ids}

    def unused_consumers(self, records: List[DeliveryRecord]) -> List[str]:
        """Members that are not credited with a single record"""
        return [consumer_id for consumer_id, count in self.records_per_consumer(records).items() if count == 0]

    async def close(self) -> None:
        results: List[Any] = await asyncio.gather(
            *(consumer.close() for consumer in self._consumers), return_exceptions=True
        )
        errors = [result for result in results if isinstance(result, BaseException)]
        for error in errors[1:]:
            logger.error(f"failed to close consumer of pool {self.group_id}: {error}")
        if errors:
            raise errors[0]
