import asyncio

import httpx
import pytest

from jobpoller.infrastructure.http.errors import UnexpectedStatusError
from jobpoller.infrastructure.resilience.api_retry import ApiRetryService, ensure_success


class FlakyOperation:
    """Fails `failures` times, then returns `result`."""

    def __init__(self, failures, result="ok", error_factory=lambda n: ConnectionError(f"attempt {n}")):
        self.failures = failures
        self.result = result
        self.error_factory = error_factory
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory(self.calls)
        return self.result


def test_returns_result_after_transient_failures(retry_service, sleeps):
    operation = FlakyOperation(failures=2)

    result = asyncio.run(retry_service.execute_with_retry(operation, max_retries=3))

    assert result == "ok"
    assert operation.calls == 3
    assert sleeps == [1.0, 2.0]


def test_raises_last_error_after_exhausting_retries(retry_service, sleeps):
    operation = FlakyOperation(failures=10)

    with pytest.raises(ConnectionError, match="attempt 4"):
        asyncio.run(retry_service.execute_with_retry(operation, max_retries=3))

    assert operation.calls == 4
    assert sleeps == [1.0, 2.0, 4.0]


def test_zero_retries_means_single_attempt(retry_service, sleeps):
    operation = FlakyOperation(failures=1)

    with pytest.raises(ConnectionError):
        asyncio.run(retry_service.execute_with_retry(operation, max_retries=0))

    assert operation.calls == 1
    assert sleeps == []


def test_non_2xx_response_counts_as_failure(retry_service):
    request = httpx.Request("POST", "http://api.test/api/scheduling/request")
    responses = [httpx.Response(503, request=request), httpx.Response(201, request=request, json={"id": "r1"})]

    async def call():
        return responses.pop(0)

    result = asyncio.run(retry_service.execute_with_retry(call, max_retries=2))

    assert result.status_code == 201


def test_final_non_2xx_response_is_raised_with_the_response(retry_service):
    request = httpx.Request("GET", "http://api.test/api/scheduling/due")

    async def call():
        return httpx.Response(404, request=request)

    with pytest.raises(UnexpectedStatusError) as exc_info:
        asyncio.run(retry_service.execute_with_retry(call, max_retries=1))

    assert exc_info.value.response.status_code == 404


def test_arguments_are_forwarded(retry_service):
    async def add(a, b, scale=1):
        return (a + b) * scale

    assert asyncio.run(retry_service.execute_with_retry(add, 2, 3, scale=10)) == 50


def test_backoff_is_capped():
    service = ApiRetryService(initial_backoff_s=1, backoff_factor=10, max_backoff_s=5)

    assert [service.backoff_for(n) for n in (1, 2, 3)] == [1, 5, 5]


def test_from_policy():
    service = ApiRetryService.from_policy({"initial_delay": 0.5, "factor": 3.0, "max_delay": 9.0}, max_retries=1)

    assert service.max_retries == 1
    assert [service.backoff_for(n) for n in (1, 2, 3)] == [0.5, 1.5, 4.5]


def test_ensure_success_passes_through_other_results():
    assert ensure_success({"a": 1}) == {"a": 1}
    assert ensure_success(httpx.Response(204)).status_code == 204
