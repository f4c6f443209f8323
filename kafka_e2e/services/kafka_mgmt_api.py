"""
Control plane REST clients

``KafkaMgmtApi`` talks to the management API that provisions Kafka
instances; ``SecurityMgmtApi`` manages the service accounts used as Kafka
credentials; ``KafkaInstanceApi`` talks to the admin API of one instance
(topics, consumer groups). Every call goes through a RetryPolicy and raises
a status-specific ApiGenericException on failure.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from kafka_e2e.config.settings import ControlPlaneSettings, RetrySettings
from kafka_e2e.exceptions import ApiGenericException
from kafka_e2e.utils.retry import RetryPolicy, default_api_policy, kafka_creation_policy

logger = logging.getLogger(__name__)


class _BaseApi:
    def __init__(
        self,
        base_url: str,
        retry_policy: RetryPolicy,
        access_token: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._retry_policy = retry_policy

    @classmethod
    def from_settings(
        cls,
        settings: ControlPlaneSettings,
        retry_settings: RetrySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        return cls(
            settings.api_base_url,
            default_api_policy(retry_settings),
            access_token=settings.access_token,
            timeout=settings.request_timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        resp = await self._client.request(method, path, **kwargs)
        if not resp.is_success:
            try:
                body = resp.json()
            except ValueError:
                body = resp.text
            raise ApiGenericException.from_response(resp.status_code, body, operation=operation)
        if not resp.content:
            return None
        return resp.json()

    async def _call(self, operation: str, method: str, path: str,
                    policy: Optional[RetryPolicy] = None, **kwargs: Any) -> Any:
        policy = policy or self._retry_policy
        return await policy.execute(lambda: self._request(operation, method, path, **kwargs), name=operation)


class KafkaMgmtApi(_BaseApi):
    """Kafka instances management API"""

    BASE_PATH = "/api/kafkas_mgmt/v1"

    def __init__(
        self,
        base_url: str,
        retry_policy: RetryPolicy,
        creation_policy: RetryPolicy,
        access_token: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(base_url, retry_policy, access_token, timeout, transport)
        self._creation_policy = creation_policy

    @classmethod
    def from_settings(
        cls,
        settings: ControlPlaneSettings,
        retry_settings: RetrySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "KafkaMgmtApi":
        return cls(
            settings.api_base_url,
            default_api_policy(retry_settings),
            kafka_creation_policy(retry_settings),
            access_token=settings.access_token,
            timeout=settings.request_timeout,
            transport=transport,
        )

    async def create_kafka(self, payload: Dict[str, Any], async_request: bool = True) -> Dict[str, Any]:
        """Request a new Kafka instance; capacity exhaustion is retried with the creation policy"""
        return await self._call(
            "create kafka",
            "POST",
            f"{self.BASE_PATH}/kafkas",
            policy=self._creation_policy,
            params={"async": str(async_request).lower()},
            json=payload,
        )

    async def get_kafka_by_id(self, kafka_id: str) -> Dict[str, Any]:
        return await self._call("get kafka", "GET", f"{self.BASE_PATH}/kafkas/{kafka_id}")

    async def get_kafkas(
        self,
        page: Optional[int] = None,
        size: Optional[int] = None,
        order_by: Optional[str] = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {
            key: value
            for key, value in {"page": page, "size": size, "orderBy": order_by, "search": search}.items()
            if value is not None
        }
        return await self._call("list kafkas", "GET", f"{self.BASE_PATH}/kafkas", params=params)

    async def delete_kafka_by_id(self, kafka_id: str, async_request: bool = True) -> None:
        await self._call(
            "delete kafka",
            "DELETE",
            f"{self.BASE_PATH}/kafkas/{kafka_id}",
            params={"async": str(async_request).lower()},
        )

    async def get_metrics_by_instant_query(self, kafka_id: str, filters: Optional[List[str]] = None) -> Dict[str, Any]:
        params = {"filters": filters} if filters else None
        return await self._call(
            "query kafka metrics", "GET", f"{self.BASE_PATH}/kafkas/{kafka_id}/metrics/query", params=params
        )


class SecurityMgmtApi(_BaseApi):
    """Service accounts API; a service account's client id and secret are Kafka credentials"""

    BASE_PATH = "/api/service_accounts/v1"

    async def get_service_account_by_id(self, account_id: str) -> Dict[str, Any]:
        return await self._call("get service account", "GET", f"{self.BASE_PATH}/{account_id}")

    async def get_service_accounts(self) -> List[Dict[str, Any]]:
        return await self._call("list service accounts", "GET", self.BASE_PATH)

    async def create_service_account(self, name: str, description: Optional[str] = None) -> Dict[str, Any]:
        payload = {"name": name}
        if description is not None:
            payload["description"] = description
        logger.info(f"create service account '{name}'")
        return await self._call("create service account", "POST", self.BASE_PATH, json=payload)

    async def delete_service_account_by_id(self, account_id: str) -> None:
        await self._call("delete service account", "DELETE", f"{self.BASE_PATH}/{account_id}")

    async def reset_service_account_creds(self, account_id: str) -> Dict[str, Any]:
        """Rotate the secret; the returned account carries the new one"""
        return await self._call(
            "reset service account credentials", "POST", f"{self.BASE_PATH}/{account_id}/resetSecret"
        )


class KafkaInstanceApi(_BaseApi):
    """Admin API of a single Kafka instance"""

    BASE_PATH = "/api/v1"

    async def create_topic(self, name: str, partitions: int = 1, config: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        settings: Dict[str, Any] = {"numPartitions": partitions}
        if config:
            settings["config"] = [{"key": key, "value": value} for key, value in config.items()]
        logger.info(f"create topic '{name}' with {partitions} partitions")
        return await self._call(
            "create topic", "POST", f"{self.BASE_PATH}/topics", json={"name": name, "settings": settings}
        )

    async def get_topic(self, name: str) -> Dict[str, Any]:
        return await self._call("get topic", "GET", f"{self.BASE_PATH}/topics/{name}")

    async def get_topics(self) -> Dict[str, Any]:
        return await self._call("list topics", "GET", f"{self.BASE_PATH}/topics")

    async def update_topic(self, name: str, partitions: Optional[int] = None,
                           config: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        settings: Dict[str, Any] = {}
        if partitions is not None:
            settings["numPartitions"] = partitions
        if config:
            settings["config"] = [{"key": key, "value": value} for key, value in config.items()]
        return await self._call("update topic", "PATCH", f"{self.BASE_PATH}/topics/{name}", json=settings)

    async def delete_topic(self, name: str) -> None:
        await self._call("delete topic", "DELETE", f"{self.BASE_PATH}/topics/{name}")

    async def get_consumer_group_by_id(self, group_id: str) -> Dict[str, Any]:
        return await self._call("get consumer group", "GET", f"{self.BASE_PATH}/consumer-groups/{group_id}")

    async def get_consumer_groups(self) -> Dict[str, Any]:
        return await self._call("list consumer groups", "GET", f"{self.BASE_PATH}/consumer-groups")

    async def delete_consumer_group(self, group_id: str) -> None:
        await self._call("delete consumer group", "DELETE", f"{self.BASE_PATH}/consumer-groups/{group_id}")
