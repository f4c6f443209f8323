from __future__ import annotations

import asyncio
import functools

import pytest
from confluent_kafka import KafkaError

from kafka_e2e.exceptions import (
    DeliveryTimeoutError,
    DeliveryVerificationError,
    KafkaAuthorizationError,
    UnusedConsumersError,
)
from kafka_e2e.models.messaging import generate_random_messages
from kafka_e2e.services.kafka_clients import connect_consumer
from kafka_e2e.services.message_delivery import MessageDeliveryHarness, assert_messages, match_messages


class TestMatchMessages:
    def test_permutation_matches(self):
        assert match_messages(["a", "b", "c"], ["c", "a", "b"]) == ([], [])

    def test_missing_message(self):
        assert match_messages(["a", "b", "c"], ["a", "c"]) == (["b"], [])

    def test_extra_message(self):
        assert match_messages(["a", "b"], ["a", "b", "x"]) == ([], ["x"])

    def test_duplicate_delivery_is_extra(self):
        assert match_messages(["a", "b"], ["a", "a", "b"]) == ([], ["a"])

    def test_duplicate_expectations_need_duplicate_deliveries(self):
        assert match_messages(["a", "a"], ["a"]) == (["a"], [])
        assert match_messages(["a", "a"], ["a", "a"]) == ([], [])

    def test_zero_messages(self):
        assert match_messages([], []) == ([], [])

    def test_assert_reports_both_lists(self):
        with pytest.raises(DeliveryVerificationError) as exc_info:
            assert_messages(["a", "b"], ["b", "z"])

        assert exc_info.value.missing == ["a"]
        assert exc_info.value.extra == ["z"]


@pytest.fixture
def harness(params, delivery_settings, producer_factory, consumer_factory) -> MessageDeliveryHarness:
    return MessageDeliveryHarness(
        params,
        delivery_settings,
        producer_factory=producer_factory,
        consumer_factory=consumer_factory,
    )


def _all_closed(broker) -> bool:  # noqa: ANN001
    return all(p.flushed for p in broker.producers) and all(c.closed for c in broker.consumers)


@pytest.mark.asyncio
async def test_delivers_thousand_random_messages(harness, broker) -> None:
    broker.create_topic("orders", partitions=3)

    report = await harness.verify_topic("orders", message_count=1000, min_size=10, max_size=100)

    assert report.sent_count == 1000
    assert report.received_count == 1000
    assert len(report.records_per_consumer) == 1
    assert report.elapsed < 10.0
    assert _all_closed(broker)


@pytest.mark.asyncio
async def test_messages_produced_before_the_run_are_ignored(harness, broker) -> None:
    broker.create_topic("orders")
    for value in ("old-1", "old-2"):
        broker.append("orders", value)

    report = await harness.verify_delivery("orders", ["new-1", "new-2"])

    assert sorted(r.value for r in report.records) == ["new-1", "new-2"]


@pytest.mark.asyncio
async def test_zero_messages_completes(harness, broker) -> None:
    broker.create_topic("orders")

    report = await harness.verify_delivery("orders", [])

    assert report.received_count == 0


@pytest.mark.asyncio
async def test_lost_message_times_out_and_tears_down(harness, broker) -> None:
    broker.create_topic("orders")
    messages = generate_random_messages(20, 10, 20)
    broker.drop_values.add(messages[5].encode())

    with pytest.raises(DeliveryTimeoutError) as exc_info:
        await harness.verify_delivery("orders", messages, timeout=0.5)

    assert exc_info.value.expected_count == 20
    assert 0.5 <= exc_info.value.elapsed < 3.0
    assert _all_closed(broker)


@pytest.mark.asyncio
async def test_duplicate_delivery_is_reported_as_extra(harness, broker) -> None:
    broker.create_topic("orders")
    messages = ["first-message", "second-message", "third-message"]
    broker.duplicate_values.add(b"first-message")

    with pytest.raises(DeliveryVerificationError) as exc_info:
        await harness.verify_delivery("orders", messages)

    assert exc_info.value.extra == ["first-message"]
    assert _all_closed(broker)


@pytest.mark.asyncio
async def test_producer_authorization_error_propagates(harness, broker) -> None:
    broker.create_topic("orders")
    broker.produce_error = KafkaError(KafkaError.TOPIC_AUTHORIZATION_FAILED)

    with pytest.raises(KafkaAuthorizationError):
        await harness.verify_delivery("orders", ["a", "b"])

    assert _all_closed(broker)


@pytest.mark.asyncio
async def test_fanout_spreads_partitions_over_the_pool(harness, broker) -> None:
    broker.create_topic("orders", partitions=3)

    report = await harness.verify_topic("orders", message_count=300, fanout=3)

    assert report.received_count == 300
    assert len(report.records_per_consumer) == 3
    assert all(count > 0 for count in report.records_per_consumer.values())

    partitions_by_consumer = {}
    for record in report.records:
        partitions_by_consumer.setdefault(record.consumer_id, set()).add(record.partition)
    owned = [p for partitions in partitions_by_consumer.values() for p in partitions]
    assert len(owned) == len(set(owned)) == 3
    assert _all_closed(broker)


@pytest.mark.asyncio
async def test_fanout_larger_than_partitions_leaves_a_consumer_unused(harness, broker) -> None:
    broker.create_topic("orders", partitions=2)

    with pytest.raises(UnusedConsumersError) as exc_info:
        await harness.verify_topic("orders", message_count=50, fanout=3)

    assert len(exc_info.value.unused_consumers) == 1
    assert _all_closed(broker)


@pytest.mark.asyncio
async def test_start_consumer_group_returns_assigned_consumer(harness, broker) -> None:
    broker.create_topic("orders")

    consumer = await harness.start_consumer_group("my-group", "orders")
    try:
        assert [tp.partition for tp in await consumer.assignment()] == [0]
        assert consumer.group_id == "my-group"
    finally:
        await consumer.close()


@pytest.mark.asyncio
async def test_start_consumer_group_closes_consumer_on_failure(harness, broker) -> None:
    broker.create_topic("orders")
    broker.consume_error = KafkaError(KafkaError.GROUP_AUTHORIZATION_FAILED)

    with pytest.raises(KafkaAuthorizationError):
        await harness.start_consumer_group("my-group", "orders")

    assert broker.consumers[0].closed


@pytest.mark.asyncio
async def test_fanout_must_be_positive(harness) -> None:
    with pytest.raises(ValueError):
        await harness.verify_delivery("orders", ["a"], fanout=0)


@pytest.mark.asyncio
async def test_pool_setup_failure_closes_created_clients(params, delivery_settings, producer_factory, broker) -> None:
    broker.create_topic("orders", partitions=3)
    connect = functools.partial(connect_consumer, consumer_factory=broker.consumer_factory)

    def _consumer_factory(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        if len(broker.consumers) == 2:
            raise RuntimeError("cannot connect consumer")
        return connect(*args, **kwargs)

    harness = MessageDeliveryHarness(
        params, delivery_settings, producer_factory=producer_factory, consumer_factory=_consumer_factory
    )

    with pytest.raises(RuntimeError, match="cannot connect consumer"):
        await harness.verify_delivery("orders", ["a", "b"], fanout=3)

    assert len(broker.producers) == 1
    assert len(broker.consumers) == 2
    assert _all_closed(broker)


@pytest.mark.asyncio
async def test_cancelling_the_run_tears_down_every_client(harness, broker) -> None:
    broker.create_topic("orders")
    broker.drop_values.add(b"lost")

    task = asyncio.create_task(harness.verify_delivery("orders", ["kept", "lost"], timeout=10.0))
    await asyncio.sleep(0.3)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert len(broker.producers) == 1
    assert len(broker.consumers) == 1
    assert _all_closed(broker)
