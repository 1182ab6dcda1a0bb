import json
from typing import Callable, Dict, List, Tuple

import httpx
import pytest

from jobpoller.infrastructure.config import settings as settings_module
from jobpoller.infrastructure.http.api_client import ApiClient
from jobpoller.infrastructure.resilience.api_retry import ApiRetryService

CONFIG_ENV_VARS = (
    "API_BASE_URL", "API_KEY",
    "KEYCLOAK_ISSUER_URL", "KEYCLOAK_URL", "KEYCLOAK_REALM",
    "KEYCLOAK_CLIENT_ID", "KEYCLOAK_CLIENT_SECRET",
    "POLL_INTERVAL_SECONDS", "POLL_INTERVAL_BILLING_SECONDS", "POLL_INTERVAL_SCHEDULER_SECONDS",
    "BATCH_SIZE", "HTTP_TIMEOUT_MS", "BILLING_MODE",
    "RETRY_INITIAL_BACKOFF_SECONDS", "RETRY_BACKOFF_FACTOR", "RETRY_MAX_BACKOFF_SECONDS",
    "LOG_LEVEL", "LOG_FORMAT", "LOG_FILE", "JOBPOLLER_CONFIG",
)

Route = Callable[[httpx.Request], httpx.Response]


class FakeApi:
    """Routes requests by (method, path) and records everything it receives."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Route]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, *handlers: Route) -> None:
        """Registers handlers; they are consumed in order, the last one repeats."""
        self.routes.setdefault((method, path), []).extend(handlers)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def json_bodies(self, method: str, path: str) -> list:
        return [json.loads(r.content) for r in self.calls(method, path)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handlers = self.routes.get((request.method, request.url.path))
        if not handlers:
            return httpx.Response(404, json={"message": "not found"})
        handler = handlers.pop(0) if len(handlers) > 1 else handlers[0]
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def respond(status: int = 200, **kwargs) -> Route:
    return lambda request: httpx.Response(status, **kwargs)


def fail_connect(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class NoCredentials:
    async def get_credential(self):
        return None


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keeps the developer's environment and config files out of the tests."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("JOBPOLLER_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.chdir(tmp_path)
    settings_module.reset_configuration()
    settings_module.clear_test_config()
    yield
    settings_module.reset_configuration()
    settings_module.clear_test_config()


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry_service(sleeps):
    """Retry service that records its backoff delays instead of waiting."""
    async def record_sleep(seconds):
        sleeps.append(seconds)
    return ApiRetryService(initial_backoff_s=1.0, backoff_factor=2.0, max_backoff_s=30.0, sleep=record_sleep)


@pytest.fixture
def api_client_factory(fake_api):
    def factory(credentials=None):
        return ApiClient(
            base_url="http://api.test/api",
            timeout_seconds=5,
            credentials=credentials or NoCredentials(),
            transport=fake_api.transport,
        )
    return factory
