from __future__ import annotations

import functools

import pytest

from kafka_e2e.config.kafka_config import KafkaConnectionParams
from kafka_e2e.config.settings import DeliverySettings
from kafka_e2e.services.kafka_clients import connect_consumer, connect_producer
from tests.utils.fake_kafka import FakeBroker


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def params() -> KafkaConnectionParams:
    return KafkaConnectionParams(bootstrap_servers="fake-kafka:9092")


@pytest.fixture
def producer_factory(broker: FakeBroker):
    return functools.partial(connect_producer, producer_factory=broker.producer_factory)


@pytest.fixture
def consumer_factory(broker: FakeBroker):
    return functools.partial(connect_consumer, consumer_factory=broker.consumer_factory)


@pytest.fixture
def delivery_settings() -> DeliverySettings:
    return DeliverySettings(
        timeout=10.0,
        assignment_poll_interval=0.05,
        assignment_timeout=2.0,
        poll_timeout=0.05,
        consumer_group_prefix="unit",
    )
