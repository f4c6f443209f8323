from __future__ import annotations

from typing import Optional

import httpx
import pytest

import kafka_e2e.utils.retry as retry_module
from kafka_e2e.config.settings import RetrySettings
from kafka_e2e.exceptions import (
    ApiGenericException,
    CliGenericException,
    KafkaAuthorizationError,
)
from kafka_e2e.utils.retry import (
    CLUSTER_CAPACITY_EXHAUSTED_CODE,
    RetryPolicy,
    default_api_policy,
    default_cli_policy,
    exponential_backoff,
    is_retryable_api_error,
    is_retryable_cli_error,
    is_retryable_creation_error,
    kafka_creation_policy,
)


class _FakeOperation:
    def __init__(self, outcomes) -> None:  # noqa: ANN001
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):  # noqa: ANN204
        self.calls += 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch):
    delays = []

    async def _fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(retry_module.asyncio, "sleep", _fake_sleep)
    return delays


def _api_error(status: int, code: Optional[str] = None) -> ApiGenericException:
    body = {"code": code, "reason": "boom"} if code else {"reason": "boom"}
    return ApiGenericException.from_response(status, body, operation="test")


@pytest.mark.asyncio
async def test_transient_error_is_retried_until_budget_is_spent(sleeps) -> None:
    error = _api_error(503)
    operation = _FakeOperation([error])
    policy = RetryPolicy(is_retryable=is_retryable_api_error, max_attempts=3, delay=0.01)

    with pytest.raises(ApiGenericException) as exc_info:
        await policy.execute(operation, name="get kafka")

    assert exc_info.value is error
    assert operation.calls == 4
    assert len(sleeps) == 3


@pytest.mark.asyncio
async def test_fatal_error_is_raised_after_one_attempt(sleeps) -> None:
    operation = _FakeOperation([_api_error(403)])
    policy = RetryPolicy(is_retryable=is_retryable_api_error, max_attempts=3)

    with pytest.raises(ApiGenericException):
        await policy.execute(operation)

    assert operation.calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_success_after_transient_failures_returns_result(sleeps) -> None:
    operation = _FakeOperation([_api_error(500), _api_error(408), {"id": "k1"}])
    policy = RetryPolicy(is_retryable=is_retryable_api_error, max_attempts=2, delay=0.5, backoff="fixed")

    assert await policy.execute(operation) == {"id": "k1"}
    assert operation.calls == 3
    assert sleeps == [0.5, 0.5]


@pytest.mark.asyncio
async def test_zero_max_attempts_means_single_attempt(sleeps) -> None:
    operation = _FakeOperation([_api_error(503)])
    policy = RetryPolicy(is_retryable=lambda e: True, max_attempts=0)

    with pytest.raises(ApiGenericException):
        await policy.execute(operation)
    assert operation.calls == 1


@pytest.mark.asyncio
async def test_sync_operations_are_supported(sleeps) -> None:
    calls = []

    def _operation() -> str:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("flaky")
        return "ok"

    assert await default_api_policy(RetrySettings()).execute(_operation) == "ok"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_unclassified_errors_follow_the_setting(sleeps) -> None:
    retrying = _FakeOperation([RuntimeError("unknown")])
    with pytest.raises(RuntimeError):
        await default_api_policy(RetrySettings(retry_unclassified_errors=True)).execute(retrying)
    assert retrying.calls == 2

    strict = _FakeOperation([RuntimeError("unknown")])
    with pytest.raises(RuntimeError):
        await default_api_policy(RetrySettings(retry_unclassified_errors=False)).execute(strict)
    assert strict.calls == 1


@pytest.mark.asyncio
async def test_creation_policy_retries_capacity_exhaustion(sleeps) -> None:
    capacity = _api_error(403, CLUSTER_CAPACITY_EXHAUSTED_CODE)
    operation = _FakeOperation([capacity, capacity, {"id": "k1", "status": "accepted"}])

    result = await kafka_creation_policy(RetrySettings(creation_delay=10.0)).execute(operation)

    assert result["id"] == "k1"
    assert sleeps == [10.0, 10.0]


@pytest.mark.asyncio
async def test_creation_policy_gives_up_after_twelve_retries(sleeps) -> None:
    operation = _FakeOperation([_api_error(403, CLUSTER_CAPACITY_EXHAUSTED_CODE)])

    with pytest.raises(ApiGenericException):
        await kafka_creation_policy(RetrySettings()).execute(operation)

    assert operation.calls == 13


def test_api_classifier() -> None:
    assert is_retryable_api_error(_api_error(500))
    assert is_retryable_api_error(_api_error(599))
    assert is_retryable_api_error(_api_error(408))
    assert not is_retryable_api_error(_api_error(400))
    assert not is_retryable_api_error(_api_error(404))
    assert not is_retryable_api_error(KafkaAuthorizationError("denied"))
    assert is_retryable_api_error(httpx.ConnectError("refused"))
    assert is_retryable_api_error(ValueError("?"))
    assert not is_retryable_api_error(ValueError("?"), retry_unclassified=False)


def test_cli_classifier_uses_status_extracted_from_output() -> None:
    server_error = CliGenericException(["cli", "kafka", "list"], 1, stderr="< HTTP/1.1 503 Service Unavailable")
    client_error = CliGenericException(["cli", "kafka", "list"], 1, stderr="< HTTP/1.1 400 Bad Request")
    no_status = CliGenericException(["cli", "kafka", "list"], 1, stderr="Error: something broke")

    assert is_retryable_cli_error(server_error)
    assert not is_retryable_cli_error(client_error)
    assert not is_retryable_cli_error(no_status)
    assert not is_retryable_cli_error(RuntimeError("boom"))


def test_cli_classifier_ignores_marker_text_outside_the_status_line() -> None:
    # "500" appears in the output but not as an HTTP status
    error = CliGenericException(["cli"], 1, stderr="Error: expected 500 partitions, got 1")

    assert error.status_code is None
    assert not is_retryable_cli_error(error)


def test_creation_classifier() -> None:
    assert is_retryable_creation_error(_api_error(403, CLUSTER_CAPACITY_EXHAUSTED_CODE))
    assert not is_retryable_creation_error(_api_error(403, "KAFKAS-MGMT-11"))
    assert is_retryable_creation_error(_api_error(502))
    assert not is_retryable_creation_error(_api_error(409))

    cli_error = CliGenericException(
        ["cli", "kafka", "create"], 1,
        stderr=f"< HTTP/1.1 403 Forbidden\nError: {CLUSTER_CAPACITY_EXHAUSTED_CODE} cluster capacity exhausted",
    )
    assert is_retryable_creation_error(cli_error)


def test_backoff_strategies() -> None:
    assert RetryPolicy(is_retryable=bool, delay=2.0, backoff="fixed").backoff_delay(5) == 2.0
    assert RetryPolicy(is_retryable=bool, delay=2.0, backoff="linear").backoff_delay(2) == 6.0
    assert RetryPolicy(is_retryable=bool, delay=1.0, max_delay=5.0).backoff_delay(10) == 5.0
    assert exponential_backoff(3, base_delay=1.0, max_delay=60.0, jitter=False) == 8.0

    with pytest.raises(ValueError):
        RetryPolicy(is_retryable=bool, backoff="random").backoff_delay(0)


def test_default_cli_policy_uses_settings() -> None:
    policy = default_cli_policy(RetrySettings(default_max_attempts=4, default_delay=0.25))

    assert policy.max_attempts == 4
    assert policy.delay == 0.25
    assert policy.is_retryable is is_retryable_cli_error


def test_policy_factories_require_explicit_settings() -> None:
    for factory in (default_api_policy, default_cli_policy, kafka_creation_policy):
        with pytest.raises(TypeError):
            factory()
