"""
Message delivery verification

Sends a known set of messages through a live topic, consumes them with one
consumer or a pool of consumers while they are produced, races the whole
exchange against a timer and checks that exactly the sent messages were
received.

Matching is by value: two sent messages with identical content cannot be
told apart, so a delivery of either one satisfies either expectation. With
random alphanumeric bodies collisions are rare but possible.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from kafka_e2e.config.kafka_config import KafkaConnectionParams
from kafka_e2e.config.settings import DeliverySettings
from kafka_e2e.exceptions import DeliveryTimeoutError, DeliveryVerificationError, UnusedConsumersError
from kafka_e2e.models.messaging import (
    DeliveryRecord,
    DeliveryReport,
    Message,
    Payload,
    generate_random_messages,
)
from kafka_e2e.services.consumer_pool import ConsumerPool
from kafka_e2e.services.kafka_clients import (
    KafkaConsumerClient,
    KafkaProducerClient,
    connect_consumer,
    connect_producer,
)
from kafka_e2e.utils.tasks import join_all, race_with_timeout

logger = logging.getLogger(__name__)


def _text(value: Optional[Payload]) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def match_messages(expected: Sequence[Any], received: Sequence[Any]) -> Tuple[List[Any], List[Any]]:
    """
    Match received values against expected values one for one.

    Every received value consumes the first equal value still expected;
    received values without a match are extra.

    Returns:
        (missing, extra)
    """
    missing = list(expected)
    extra = []
    for value in received:
        try:
            missing.remove(value)
        except ValueError:
            extra.append(value)
    return missing, extra


def assert_messages(expected: Sequence[Any], received: Sequence[Any]) -> None:
    missing, extra = match_messages(expected, received)
    if missing or extra:
        raise DeliveryVerificationError(missing, extra)


def assert_records(messages: Sequence[Message], records: Sequence[DeliveryRecord]) -> None:
    assert_messages([_text(m.value) for m in messages], [_text(r.value) for r in records])


def assert_unused_consumers(pool: ConsumerPool, records: Sequence[DeliveryRecord]) -> None:
    unused = pool.unused_consumers(list(records))
    if unused:
        raise UnusedConsumersError(unused)


class MessageDeliveryHarness:
    """
    Produce/consume delivery oracle for one Kafka instance

    Args:
        params: Connection parameters of the instance under test
        settings: Delivery settings (timeouts, message sizes, polling)
        producer_factory: Creates the producer for a run
        consumer_factory: Creates consumers, also for the consumer pool
    """

    def __init__(
        self,
        params: KafkaConnectionParams,
        settings: DeliverySettings,
        producer_factory: Callable[..., KafkaProducerClient] = connect_producer,
        consumer_factory: Callable[..., KafkaConsumerClient] = connect_consumer,
    ) -> None:
        self._params = params
        self._settings = settings
        self._producer_factory = producer_factory
        self._consumer_factory = consumer_factory

    def _new_group_id(self) -> str:
        return f"{self._settings.consumer_group_prefix}-{uuid.uuid4().hex[:8]}"

    async def start_consumer_group(self, group_id: str, topic: str) -> KafkaConsumerClient:
        """
        Start a consumer of ``group_id`` on ``topic`` and wait until it owns
        partitions. The caller closes the returned consumer.
        """
        logger.info(f"start kafka consumer with group id '{group_id}'")
        consumer = self._consumer_factory(
            self._params, group_id, offset_reset="latest", poll_timeout=self._settings.poll_timeout
        )
        try:
            await consumer.subscribe(topic)
            await consumer.wait_for_assignment(topic, poll_interval=2.0, timeout=self._settings.assignment_timeout)
        except BaseException:
            await consumer.close()
            raise
        return consumer

    async def verify_topic(
        self,
        topic: str,
        message_count: Optional[int] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
        timeout: Optional[float] = None,
        fanout: int = 1,
    ) -> DeliveryReport:
        """Send ``message_count`` random messages and verify their delivery"""
        messages = generate_random_messages(
            self._settings.message_count if message_count is None else message_count,
            self._settings.min_message_size if min_size is None else min_size,
            self._settings.max_message_size if max_size is None else max_size,
        )
        return await self.verify_delivery(topic, messages, timeout=timeout, fanout=fanout)

    async def verify_delivery(
        self,
        topic: str,
        messages: Sequence[Union[Message, Payload]],
        timeout: Optional[float] = None,
        fanout: int = 1,
        group_id: Optional[str] = None,
    ) -> DeliveryReport:
        """
        Verify that exactly ``messages`` are delivered through ``topic``.

        Args:
            topic: Topic to produce to and consume from
            messages: Messages to send
            timeout: Limit for the concurrent produce+consume phase
            fanout: Number of consumers; more than one uses a ConsumerPool
            group_id: Consumer group id, generated when omitted

        Returns:
            DeliveryReport with the received records and the elapsed time

        Raises:
            DeliveryTimeoutError: the timer fired before produce+consume completed
            DeliveryVerificationError: missing and/or extra messages
            UnusedConsumersError: a pool member received nothing (fanout > 1)
            KafkaTransportError: produce/consume failures, never retried here
        """
        if fanout < 1:
            raise ValueError(f"fanout must be at least 1, got {fanout}")

        timeout = self._settings.timeout if timeout is None else timeout
        batch = [item if isinstance(item, Message) else Message(value=item) for item in messages]
        group_id = group_id or self._new_group_id()

        producer: Optional[KafkaProducerClient] = None
        consumer: Optional[KafkaConsumerClient] = None
        pool: Optional[ConsumerPool] = None

        try:
            producer = self._producer_factory(self._params)

            if fanout > 1:
                pool = await ConsumerPool.connect(
                    self._params,
                    group_id,
                    fanout,
                    poll_timeout=self._settings.poll_timeout,
                    consumer_factory=self._consumer_factory,
                )
                await pool.reset_all_to_end(topic)
                await pool.subscribe_all(topic)
            else:
                consumer = self._consumer_factory(
                    self._params, group_id, offset_reset="latest", poll_timeout=self._settings.poll_timeout
                )
                await consumer.subscribe(topic)
                # messages produced before the assignment would be missed
                await consumer.wait_for_assignment(
                    topic,
                    poll_interval=self._settings.assignment_poll_interval,
                    timeout=self._settings.assignment_timeout,
                )

            logger.info(f"start listening for {len(batch)} messages on topic {topic}")
            consume = pool.consume_all(len(batch)) if pool else consumer.receive(len(batch))

            start = time.monotonic()
            try:
                _, records = await race_with_timeout(join_all(producer.send_all(topic, batch), consume), timeout)
            except asyncio.TimeoutError:
                elapsed = time.monotonic() - start
                logger.error(f"timeout after {elapsed:.1f}s waiting for {len(batch)} messages on topic {topic}")
                raise DeliveryTimeoutError(len(batch), topic, elapsed) from None
            elapsed = time.monotonic() - start

            logger.info(f"producer and consumer has complete for topic {topic}: "
                        f"received {len(records)} messages in {elapsed:.2f}s")
        except BaseException:
            await self._teardown(topic, producer, consumer, pool, raise_errors=False)
            raise

        await self._teardown(topic, producer, consumer, pool, raise_errors=True)

        assert_records(batch, records)
        if pool is not None:
            assert_unused_consumers(pool, records)
            per_consumer = pool.records_per_consumer(records)
        else:
            per_consumer = {consumer.consumer_id: len(records)}

        return DeliveryReport(
            topic=topic,
            sent_count=len(batch),
            records=records,
            elapsed=elapsed,
            records_per_consumer=per_consumer,
        )

    async def _teardown(
        self,
        topic: str,
        producer: Optional[KafkaProducerClient],
        consumer: Optional[KafkaConsumerClient],
        pool: Optional[ConsumerPool],
        raise_errors: bool,
    ) -> None:
        """Close every client that was created; close errors never hide a run failure"""
        logger.info(f"close the consumer and the producer for topic {topic}")
        clients = [client for client in (producer, consumer, pool) if client is not None]
        results = await asyncio.gather(*(client.close() for client in clients), return_exceptions=True)
        errors = [result for result in results if isinstance(result, BaseException)]
        for error in errors:
            logger.error(f"failed to close kafka client for topic {topic}: {error}")
        if errors and raise_errors:
            raise errors[0]
