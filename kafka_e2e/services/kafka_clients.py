"""
Async Kafka producer and consumer clients

confluent-kafka calls block, so every client owns a single-thread executor
and runs its librdkafka calls there; the event loop is never blocked for a
poll or a flush. Broker errors are mapped to KafkaTransportError, with
authorization failures as KafkaAuthorizationError.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from confluent_kafka import Consumer, KafkaError, KafkaException, Producer, TopicPartition

from kafka_e2e.config.kafka_config import KafkaClientConfig, KafkaConnectionParams
from kafka_e2e.exceptions import KafkaAuthorizationError, KafkaTransportError
from kafka_e2e.models.messaging import DeliveryRecord, Message, Payload, generate_random_messages
from kafka_e2e.utils.wait import wait_for

logger = logging.getLogger(__name__)

_AUTHORIZATION_ERRORS = {
    KafkaError.TOPIC_AUTHORIZATION_FAILED,
    KafkaError.GROUP_AUTHORIZATION_FAILED,
    KafkaError.CLUSTER_AUTHORIZATION_FAILED,
    KafkaError.TRANSACTIONAL_ID_AUTHORIZATION_FAILED,
    KafkaError.SASL_AUTHENTICATION_FAILED,
    KafkaError._AUTHENTICATION,
}

# Upper bound of messages returned by a single consume() call
_CONSUME_BATCH_SIZE = 500


def kafka_error_to_exception(error: Any, operation: Optional[str] = None) -> KafkaTransportError:
    """Map a confluent KafkaError to the suite's transport exceptions"""
    if isinstance(error, KafkaError):
        if error.code() in _AUTHORIZATION_ERRORS:
            return KafkaAuthorizationError(error.str(), kafka_error=error, operation=operation)
        return KafkaTransportError(error.str(), kafka_error=error, operation=operation)
    return KafkaTransportError(str(error), kafka_error=error, operation=operation)


def _decode(value: Optional[bytes], decode: bool) -> Optional[Payload]:
    if value is None or not decode or isinstance(value, str):
        return value
    return value.decode("utf-8")


def _as_message(item: Union[Message, Payload]) -> Message:
    return item if isinstance(item, Message) else Message(value=item)


class _KafkaClient:
    """Runs blocking librdkafka calls on a dedicated thread"""

    def __init__(self, thread_name_prefix: str) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name_prefix)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _call(self, func: Callable[..., Any], *args: Any, operation: Optional[str] = None, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))
        except KafkaException as e:
            error = e.args[0] if e.args else e
            raise kafka_error_to_exception(error, operation=operation) from e


class KafkaProducerClient(_KafkaClient):
    """Producer sending messages and awaiting their broker acknowledgements"""

    def __init__(
        self,
        params: KafkaConnectionParams,
        client_id: Optional[str] = None,
        producer_factory: Callable[[Dict[str, Any]], Any] = Producer,
    ) -> None:
        super().__init__("kafka-producer")
        self.client_id = client_id or f"mk-e2e-producer-{uuid.uuid4().hex[:8]}"
        self._producer = producer_factory(KafkaClientConfig.get_producer_config(params, self.client_id))

    def _produce_batch(self, topic: str, messages: List[Message], callbacks: List[Callable]) -> None:
        for message, callback in zip(messages, callbacks):
            kwargs: Dict[str, Any] = {"value": message.value, "on_delivery": callback}
            if message.key is not None:
                kwargs["key"] = message.key
            if message.partition is not None:
                kwargs["partition"] = message.partition

            while True:
                try:
                    self._producer.produce(topic, **kwargs)
                    break
                except BufferError:
                    # local queue is full, serve delivery reports to make room
                    self._producer.poll(0.5)
            self._producer.poll(0)

    async def send(self, topic: str, message: Union[Message, Payload]) -> DeliveryRecord:
        records = await self.send_all(topic, [message])
        return records[0]

    async def send_all(self, topic: str, messages: Sequence[Union[Message, Payload]]) -> List[DeliveryRecord]:
        """
        Produce all messages and wait for every delivery acknowledgement

        Returns:
            Acknowledged records in send order

        Raises:
            KafkaTransportError: first delivery failure (KafkaAuthorizationError when denied)
        """
        loop = asyncio.get_running_loop()
        batch = [_as_message(item) for item in messages]
        futures: List[asyncio.Future] = [loop.create_future() for _ in batch]
        callbacks = [self._delivery_callback(loop, future, topic) for future in futures]

        logger.info(f"start sending {len(batch)} messages on topic {topic}")
        await self._call(self._produce_batch, topic, batch, callbacks, operation=f"produce to {topic}")

        while not all(future.done() for future in futures):
            await self._call(self._producer.poll, 0.1)
            failed = next((f for f in futures if f.done() and f.exception() is not None), None)
            if failed is not None:
                raise failed.exception()

        return [future.result() for future in futures]

    @staticmethod
    def _delivery_callback(loop: asyncio.AbstractEventLoop, future: asyncio.Future, topic: str) -> Callable:
        def _resolve(outcome: Any, failed: bool) -> None:
            if future.done():
                return
            if failed:
                future.set_exception(outcome)
            else:
                future.set_result(outcome)

        def _on_delivery(err: Any, msg: Any) -> None:
            if err is not None:
                exc = kafka_error_to_exception(err, operation=f"produce to {topic}")
                loop.call_soon_threadsafe(_resolve, exc, True)
                return
            record = DeliveryRecord(
                topic=msg.topic(),
                value=_decode(msg.value(), True),
                key=_decode(msg.key(), True),
                partition=msg.partition(),
                offset=msg.offset(),
            )
            loop.call_soon_threadsafe(_resolve, record, False)

        return _on_delivery

    async def close(self, flush_timeout: float = 10.0) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            remaining = await self._call(self._producer.flush, flush_timeout, operation="flush producer")
            if remaining:
                logger.warning(f"producer {self.client_id} closed with {remaining} undelivered messages")
        finally:
            self._executor.shutdown(wait=False)


class KafkaConsumerClient(_KafkaClient):
    """
    Consumer member of a consumer group

    Records are attributed to ``consumer_id``. Records polled while waiting
    for the partition assignment are buffered and returned by the next
    ``poll``/``receive``.
    """

    def __init__(
        self,
        params: KafkaConnectionParams,
        group_id: str,
        offset_reset: str = "latest",
        consumer_id: Optional[str] = None,
        poll_timeout: float = 1.0,
        decode: bool = True,
        consumer_factory: Callable[[Dict[str, Any]], Any] = Consumer,
    ) -> None:
        super().__init__("kafka-consumer")
        self.group_id = group_id
        self.consumer_id = consumer_id or f"{group_id}-{uuid.uuid4().hex[:8]}"
        self.poll_timeout = poll_timeout
        self._decode = decode
        self._buffer: List[DeliveryRecord] = []
        self._consumer = consumer_factory(
            KafkaClientConfig.get_consumer_config(params, group_id, offset_reset, client_id=self.consumer_id)
        )

    def __repr__(self) -> str:
        return f"KafkaConsumerClient(consumer_id={self.consumer_id!r}, group_id={self.group_id!r})"

    async def subscribe(self, topic: str) -> None:
        logger.info(f"consumer {self.consumer_id} subscribing to topic {topic}")
        await self._call(self._consumer.subscribe, [topic], operation=f"subscribe to {topic}")

    async def assignment(self) -> List[TopicPartition]:
        return await self._call(self._consumer.assignment, operation="assignment")

    async def wait_for_assignment(self, topic: str, poll_interval: float = 1.0, timeout: float = 120.0) -> List[int]:
        """
        Poll until the group coordinator assigns at least one partition of
        ``topic`` to this consumer. The rebalance only progresses while the
        consumer polls, so every check polls once.

        Returns:
            Assigned partition numbers
        """
        async def _check(is_last: bool):
            self._buffer.extend(await self._poll_records(min(self.poll_timeout, poll_interval)))
            partitions = [tp.partition for tp in await self.assignment() if tp.topic == topic]
            if is_last and not partitions:
                logger.warning(f"consumer {self.consumer_id} still has no partition of {topic}")
            return bool(partitions), partitions

        return await wait_for(
            f"consumer {self.consumer_id} to be assigned to {topic}", poll_interval, timeout, _check
        )

    async def reset_to_end(self, topic: str, timeout: float = 30.0) -> Dict[int, int]:
        """
        Commit the current end offset of every partition of ``topic`` for the
        group, so the group only sees messages produced after this call.

        Returns:
            Committed offset per partition
        """
        def _reset() -> List[TopicPartition]:
            metadata = self._consumer.list_topics(topic, timeout=timeout)
            topic_metadata = metadata.topics.get(topic)
            if topic_metadata is None:
                raise KafkaTransportError(f"topic {topic} not found", operation="reset to end")
            if topic_metadata.error is not None:
                raise kafka_error_to_exception(topic_metadata.error, operation="reset to end")

            offsets = []
            for partition in sorted(topic_metadata.partitions):
                _, high = self._consumer.get_watermark_offsets(TopicPartition(topic, partition), timeout=timeout)
                offsets.append(TopicPartition(topic, partition, high))
            if offsets:
                self._consumer.commit(offsets=offsets, asynchronous=False)
            return offsets

        offsets = await self._call(_reset, operation=f"reset {topic} to end")
        logger.debug(f"consumer {self.consumer_id} reset {topic} to end: {offsets}")
        return {tp.partition: tp.offset for tp in offsets}

    def _to_record(self, msg: Any) -> DeliveryRecord:
        return DeliveryRecord(
            topic=msg.topic(),
            value=_decode(msg.value(), self._decode),
            key=_decode(msg.key(), self._decode),
            partition=msg.partition(),
            offset=msg.offset(),
            consumer_id=self.consumer_id,
        )

    async def _poll_records(self, timeout: float) -> List[DeliveryRecord]:
        messages = await self._call(
            self._consumer.consume, _CONSUME_BATCH_SIZE, timeout, operation=f"consume by {self.consumer_id}"
        )
        records = []
        for msg in messages or []:
            error = msg.error()
            if error is None:
                records.append(self._to_record(msg))
                continue
            if error.code() == KafkaError._PARTITION_EOF:
                continue
            exc = kafka_error_to_exception(error, operation=f"consume by {self.consumer_id}")
            if isinstance(exc, KafkaAuthorizationError) or error.fatal():
                raise exc
            logger.warning(f"consumer {self.consumer_id} ignoring non fatal error: {error}")
        return records

    async def poll(self, timeout: Optional[float] = None) -> List[DeliveryRecord]:
        """Return buffered records plus the records of one consume call"""
        records, self._buffer = self._buffer, []
        records.extend(await self._poll_records(self.poll_timeout if timeout is None else timeout))
        return records

    async def receive(self, count: int) -> List[DeliveryRecord]:
        """Poll until at least ``count`` records were received"""
        records, self._buffer = self._buffer, []
        while len(records) < count:
            records.extend(await self._poll_records(self.poll_timeout))
        logger.info(f"consumer {self.consumer_id} received {len(records)} records")
        return records

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._call(self._consumer.close, operation=f"close consumer {self.consumer_id}")
        finally:
            self._executor.shutdown(wait=False)


def connect_producer(params: KafkaConnectionParams, **kwargs: Any) -> KafkaProducerClient:
    """Create a producer for the Kafka instance described by ``params``"""
    return KafkaProducerClient(params, **kwargs)


def connect_consumer(params: KafkaConnectionParams, group_id: str, **kwargs: Any) -> KafkaConsumerClient:
    """Create a consumer of ``group_id`` for the Kafka instance described by ``params``"""
    return KafkaConsumerClient(params, group_id, **kwargs)


async def send_single_message(producer: KafkaProducerClient, topic: str, message_size: int) -> DeliveryRecord:
    """Send one random message of exactly ``message_size`` characters"""
    value = generate_random_messages(1, message_size, message_size)[0]
    return await producer.send(topic, value)
