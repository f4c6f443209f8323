from __future__ import annotations

import pytest

from kafka_e2e.config.settings import ControlPlaneSettings, RetrySettings
from kafka_e2e.exceptions import ApiNotFoundException, WaitTimeoutError
from kafka_e2e.services import kafka_mgmt_utils
from kafka_e2e.services.kafka_mgmt_utils import (
    KafkaInstanceFailedError,
    apply_kafka_instance,
    apply_topic,
    clean_kafka_instance,
    collect_topic_metric,
    get_partition_count_total,
    kafka_instance_api,
    kafka_instance_api_uri,
    wait_for_consumers_in_consumer_group,
    wait_for_metric,
    wait_for_topic_deleted,
    wait_until_kafka_is_deleted,
    wait_until_kafka_is_ready,
)


def _not_found() -> ApiNotFoundException:
    return ApiNotFoundException("not found", status_code=404)


class _FakeMgmtApi:
    def __init__(self, states=None, kafkas=None, metrics=None) -> None:  # noqa: ANN001
        self.states = list(states or [])
        self.kafkas = list(kafkas or [])
        self.metrics = list(metrics or [])
        self.created = []
        self.deleted = []
        self.searches = []

    async def get_kafka_by_id(self, kafka_id):  # noqa: ANN001, ANN201
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(state, BaseException):
            raise state
        return state

    async def get_kafkas(self, search=None, **kwargs):  # noqa: ANN001, ANN003, ANN201
        self.searches.append(search)
        return {"items": self.kafkas}

    async def create_kafka(self, payload):  # noqa: ANN001, ANN201
        self.created.append(payload)
        return {"id": "new", **payload}

    async def delete_kafka_by_id(self, kafka_id):  # noqa: ANN001, ANN201
        self.deleted.append(kafka_id)

    async def get_metrics_by_instant_query(self, kafka_id):  # noqa: ANN001, ANN201
        return self.metrics.pop(0) if len(self.metrics) > 1 else self.metrics[0]


class _FakeInstanceApi:
    def __init__(self, topics=None, groups=None) -> None:  # noqa: ANN001
        self.topics = dict(topics or {})
        self.groups = list(groups or [])
        self.created = []

    async def get_topic(self, name):  # noqa: ANN001, ANN201
        if name not in self.topics:
            raise _not_found()
        value = self.topics[name]
        if isinstance(value, list):
            # successive lookups see successive states, None means deleted
            state = value.pop(0) if len(value) > 1 else value[0]
            if state is None:
                raise _not_found()
            return state
        return value

    async def create_topic(self, name, partitions=1):  # noqa: ANN001, ANN201
        self.created.append((name, partitions))
        return {"name": name}

    async def get_topics(self):  # noqa: ANN201
        return {"items": [{"name": name, **value} for name, value in self.topics.items()]}

    async def get_consumer_group_by_id(self, group_id):  # noqa: ANN001, ANN201
        return self.groups.pop(0) if len(self.groups) > 1 else self.groups[0]


def test_instance_api_uri_strips_port() -> None:
    template = "https://admin-server-{host}/rest"

    assert kafka_instance_api_uri("my-kafka.example.com:443", template) == "https://admin-server-my-kafka.example.com/rest"
    assert kafka_instance_api_uri("my-kafka.example.com", template) == "https://admin-server-my-kafka.example.com/rest"


@pytest.mark.asyncio
async def test_instance_api_from_kafka() -> None:
    settings = ControlPlaneSettings(kafka_instance_api_template="https://{host}/rest", access_token="t")
    retry_settings = RetrySettings(default_max_attempts=3, default_delay=0.5)
    api = kafka_instance_api({"bootstrap_server_host": "k.example.com:443"}, settings, retry_settings)
    try:
        assert api._retry_policy.max_attempts == 3
        assert api._retry_policy.delay == 0.5
        assert api._client.base_url.host == "k.example.com"
        assert api._client.base_url.path.startswith("/rest")
    finally:
        await api.close()


@pytest.mark.asyncio
async def test_wait_until_ready() -> None:
    api = _FakeMgmtApi(states=[{"id": "k1", "status": "accepted"}, {"id": "k1", "status": "provisioning"},
                               {"id": "k1", "status": "ready"}])

    kafka = await wait_until_kafka_is_ready(api, "k1", poll_interval=0.01, timeout=1.0)

    assert kafka["status"] == "ready"


@pytest.mark.asyncio
async def test_failed_instance_stops_the_wait() -> None:
    api = _FakeMgmtApi(states=[{"id": "k1", "status": "failed", "failed_reason": "no capacity"}])

    with pytest.raises(KafkaInstanceFailedError, match="no capacity"):
        await wait_until_kafka_is_ready(api, "k1", poll_interval=0.01, timeout=1.0)


@pytest.mark.asyncio
async def test_wait_until_ready_times_out_with_last_state() -> None:
    api = _FakeMgmtApi(states=[{"id": "k1", "status": "provisioning"}])

    with pytest.raises(WaitTimeoutError) as exc_info:
        await wait_until_kafka_is_ready(api, "k1", poll_interval=0.01, timeout=0.05)

    assert exc_info.value.last_value["status"] == "provisioning"


@pytest.mark.asyncio
async def test_not_found_is_the_deleted_state() -> None:
    api = _FakeMgmtApi(states=[{"id": "k1", "status": "deprovision"}, _not_found()])

    await wait_until_kafka_is_deleted(api, "k1", poll_interval=0.01, timeout=1.0)


@pytest.mark.asyncio
async def test_apply_kafka_instance_reuses_existing() -> None:
    existing = _FakeMgmtApi(kafkas=[{"id": "k1", "name": "e2e"}])
    assert (await apply_kafka_instance(existing, {"name": "e2e"}))["id"] == "k1"
    assert existing.created == []
    assert existing.searches == ["name = e2e"]

    missing = _FakeMgmtApi()
    assert (await apply_kafka_instance(missing, {"name": "e2e"}))["id"] == "new"
    assert missing.created == [{"name": "e2e"}]


@pytest.mark.asyncio
async def test_clean_kafka_instance(monkeypatch: pytest.MonkeyPatch) -> None:
    waited = []

    async def _fake_wait(api, kafka_id):  # noqa: ANN001, ANN202
        waited.append(kafka_id)

    monkeypatch.setattr(kafka_mgmt_utils, "wait_until_kafka_is_deleted", _fake_wait)
    api = _FakeMgmtApi(kafkas=[{"id": "k1", "name": "e2e"}])

    await clean_kafka_instance(api, "e2e")
    await clean_kafka_instance(_FakeMgmtApi(), "other")

    assert api.deleted == ["k1"]
    assert waited == ["k1"]


@pytest.mark.asyncio
async def test_apply_topic_and_wait_for_deletion() -> None:
    api = _FakeInstanceApi(topics={"existing": {"name": "existing"}, "going": [{"name": "going"}, None]})

    assert (await apply_topic(api, "existing"))["name"] == "existing"
    assert (await apply_topic(api, "orders", partitions=3))["name"] == "orders"
    assert api.created == [("orders", 3)]

    await wait_for_topic_deleted(api, "going", poll_interval=0.01, timeout=1.0)


@pytest.mark.asyncio
async def test_wait_for_consumers_in_consumer_group() -> None:
    api = _FakeInstanceApi(groups=[{"groupId": "g", "consumers": []}, {"groupId": "g", "consumers": [{"partition": 0}]}])

    group = await wait_for_consumers_in_consumer_group(api, "g", poll_interval=0.01, timeout=1.0)

    assert len(group["consumers"]) == 1


def test_collect_topic_metric_sums_matching_samples() -> None:
    items = [
        {"metric": {"__name__": "kafka_server_brokertopicmetrics_messages_in_total", "topic": "orders"}, "value": 10},
        {"metric": {"__name__": "kafka_server_brokertopicmetrics_messages_in_total", "topic": "orders"}, "value": 5},
        {"metric": {"__name__": "kafka_server_brokertopicmetrics_messages_in_total", "topic": "other"}, "value": 7},
        {"metric": {"__name__": "kafka_log_log_size", "topic": "orders"}, "value": 100},
    ]

    assert collect_topic_metric(items, "orders", "kafka_server_brokertopicmetrics_messages_in_total") == 15.0
    assert collect_topic_metric([], "orders", "anything") == 0.0


@pytest.mark.asyncio
async def test_wait_for_metric() -> None:
    name = "kafka_server_brokertopicmetrics_messages_in_total"

    def _sample(value: int) -> dict:
        return {"items": [{"metric": {"__name__": name, "topic": "orders"}, "value": value}]}

    api = _FakeMgmtApi(metrics=[_sample(0), _sample(50), _sample(100)])

    assert await wait_for_metric(api, "k1", "orders", name, 100, poll_interval=0.01, timeout=1.0) == 100.0

    stuck = _FakeMgmtApi(metrics=[_sample(3)])
    with pytest.raises(WaitTimeoutError) as exc_info:
        await wait_for_metric(stuck, "k1", "orders", name, 100, poll_interval=0.01, timeout=0.05)
    assert exc_info.value.last_value == 3.0


@pytest.mark.asyncio
async def test_partition_count_total_skips_internal_topics() -> None:
    api = _FakeInstanceApi(topics={
        "orders": {"partitions": [{"partition": 0}, {"partition": 1}, {"partition": 2}]},
        "payments": {"partitions": [{"partition": 0}]},
        "__consumer_offsets": {"partitions": [{"partition": i} for i in range(50)]},
        "empty": {},
    })

    assert await get_partition_count_total(api) == 4
    assert await get_partition_count_total(_FakeInstanceApi()) == 0
