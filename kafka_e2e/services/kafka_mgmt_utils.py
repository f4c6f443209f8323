"""
Control plane convergence helpers

Create-or-get helpers and waits for eventually consistent resource state:
instance ready/deleted, topic deleted, consumer group visible, metric
updated. "Not found" is a valid terminal state when waiting for deletion.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from kafka_e2e.config.settings import ControlPlaneSettings, RetrySettings
from kafka_e2e.exceptions import ApiNotFoundException, DomainException
from kafka_e2e.models.messaging import ConditionOutcome
from kafka_e2e.services.kafka_mgmt_api import KafkaInstanceApi, KafkaMgmtApi
from kafka_e2e.utils.retry import default_api_policy
from kafka_e2e.utils.wait import wait_for

logger = logging.getLogger(__name__)

KAFKA_READY_STATUS = "ready"
KAFKA_FAILED_STATUS = "failed"


class KafkaInstanceFailedError(DomainException):
    def __init__(self, kafka: Dict[str, Any]):
        super().__init__(
            message=f"kafka instance {kafka.get('id')} failed: {kafka.get('failed_reason')}",
            code="KAFKA_INSTANCE_FAILED",
            details={"kafka_id": kafka.get("id"), "status": kafka.get("status")}
        )
        self.kafka = kafka


def kafka_instance_api_uri(bootstrap_server_host: str, template: str) -> str:
    """Admin API URL of the instance reachable at ``bootstrap_server_host``"""
    hostname = bootstrap_server_host.split(":", 1)[0]
    return template.format(host=hostname)


def kafka_instance_api(
    kafka: Dict[str, Any],
    settings: ControlPlaneSettings,
    retry_settings: RetrySettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> KafkaInstanceApi:
    uri = kafka_instance_api_uri(kafka["bootstrap_server_host"], settings.kafka_instance_api_template)
    return KafkaInstanceApi(
        uri,
        default_api_policy(retry_settings),
        access_token=settings.access_token,
        timeout=settings.request_timeout,
        transport=transport,
    )


# ---------------------------------------------------------------------------
# Kafka instances
# ---------------------------------------------------------------------------

async def get_kafka_by_name(api: KafkaMgmtApi, name: str) -> Optional[Dict[str, Any]]:
    kafkas = await api.get_kafkas(search=f"name = {name}")
    items = (kafkas or {}).get("items") or []
    return items[0] if items else None


async def apply_kafka_instance(api: KafkaMgmtApi, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Return the instance named ``payload['name']``, creating it when missing"""
    existing = await get_kafka_by_name(api, payload["name"])
    if existing is not None:
        logger.warning(f"kafka instance '{payload['name']}' already exists")
        return existing

    logger.info(f"create kafka instance '{payload['name']}'")
    return await api.create_kafka(payload)


async def wait_until_kafka_is_ready(
    api: KafkaMgmtApi,
    kafka_id: str,
    poll_interval: float = 10.0,
    timeout: float = 900.0,
) -> Dict[str, Any]:
    async def _check(is_last: bool):
        kafka = await api.get_kafka_by_id(kafka_id)
        status = kafka.get("status")
        if status == KAFKA_FAILED_STATUS:
            raise KafkaInstanceFailedError(kafka)
        if is_last:
            logger.warning(f"last kafka instance {kafka_id} status: {status}")
        return ConditionOutcome(status == KAFKA_READY_STATUS, kafka)

    return await wait_for(f"kafka instance {kafka_id} to be ready", poll_interval, timeout, _check)


async def wait_until_kafka_is_deleted(
    api: KafkaMgmtApi,
    kafka_id: str,
    poll_interval: float = 10.0,
    timeout: float = 600.0,
) -> None:
    async def _check(is_last: bool):
        try:
            kafka = await api.get_kafka_by_id(kafka_id)
        except ApiNotFoundException:
            return True, None
        return False, kafka.get("status")

    await wait_for(f"kafka instance {kafka_id} to be deleted", poll_interval, timeout, _check)


async def clean_kafka_instance(api: KafkaMgmtApi, name: str, wait: bool = True) -> None:
    """Delete the instance named ``name`` if it exists"""
    kafka = await get_kafka_by_name(api, name)
    if kafka is None:
        logger.warning(f"kafka instance '{name}' not found")
        return

    logger.info(f"delete kafka instance '{name}' ({kafka['id']})")
    await api.delete_kafka_by_id(kafka["id"])
    if wait:
        await wait_until_kafka_is_deleted(api, kafka["id"])


# ---------------------------------------------------------------------------
# Topics and consumer groups
# ---------------------------------------------------------------------------

async def get_topic_by_name(api: KafkaInstanceApi, name: str) -> Optional[Dict[str, Any]]:
    try:
        return await api.get_topic(name)
    except ApiNotFoundException:
        return None


async def apply_topic(api: KafkaInstanceApi, name: str, partitions: int = 1) -> Dict[str, Any]:
    existing = await get_topic_by_name(api, name)
    if existing is not None:
        logger.warning(f"topic '{name}' already exists")
        return existing
    return await api.create_topic(name, partitions=partitions)


async def wait_for_topic_deleted(
    api: KafkaInstanceApi,
    name: str,
    poll_interval: float = 1.0,
    timeout: float = 60.0,
) -> None:
    async def _check(is_last: bool):
        topic = await get_topic_by_name(api, name)
        return topic is None, topic

    await wait_for(f"topic {name} to be deleted", poll_interval, timeout, _check)


async def get_partition_count_total(api: KafkaInstanceApi) -> int:
    """Sum of the partitions of all public topics; internal ``__*`` topics are skipped"""
    topics = await api.get_topics()
    return sum(
        len(topic.get("partitions") or [])
        for topic in (topics or {}).get("items") or []
        if not topic.get("name", "").startswith("__")
    )


async def get_consumer_group_by_name(api: KafkaInstanceApi, group_id: str) -> Optional[Dict[str, Any]]:
    try:
        return await api.get_consumer_group_by_id(group_id)
    except ApiNotFoundException:
        return None


async def wait_for_consumer_group(
    api: KafkaInstanceApi,
    group_id: str,
    poll_interval: float = 2.0,
    timeout: float = 60.0,
) -> Dict[str, Any]:
    async def _check(is_last: bool):
        group = await get_consumer_group_by_name(api, group_id)
        return group is not None, group

    return await wait_for("consumer group", poll_interval, timeout, _check)


async def wait_for_consumers_in_consumer_group(
    api: KafkaInstanceApi,
    group_id: str,
    poll_interval: float = 2.0,
    timeout: float = 60.0,
) -> Dict[str, Any]:
    # the admin api can take a few seconds to report a connected consumer
    async def _check(is_last: bool):
        group = await api.get_consumer_group_by_id(group_id)
        return len(group.get("consumers") or []) > 0, group

    return await wait_for("consumers in consumer group", poll_interval, timeout, _check)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def collect_topic_metric(items: List[Dict[str, Any]], topic: str, metric_name: str) -> float:
    """Sum the values of ``metric_name`` samples labelled with ``topic``"""
    total = 0.0
    for item in items or []:
        labels = item.get("metric") or {}
        if labels.get("__name__") == metric_name and labels.get("topic") == topic:
            total += float(item.get("value") or 0)
    return total


async def wait_for_metric(
    api: KafkaMgmtApi,
    kafka_id: str,
    topic: str,
    metric_name: str,
    expected_value: float,
    poll_interval: float = 1.0,
    timeout: float = 10.0,
) -> float:
    """Wait until the topic metric reaches ``expected_value``"""
    async def _check(is_last: bool):
        metrics = await api.get_metrics_by_instant_query(kafka_id)
        value = collect_topic_metric((metrics or {}).get("items") or [], topic, metric_name)
        if is_last:
            logger.warning(f"last {metric_name} value: {value}")
        return ConditionOutcome(value == expected_value, value)

    return await wait_for("metric to be updated", poll_interval, timeout, _check)
