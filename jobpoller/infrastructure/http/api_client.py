"""httpx-based client for the remote API.

Every request is sent relative to the API root (origin + `/api`) with a fixed
timeout, and carries the bearer credential resolved just before sending.
"""

import logging
from typing import Any, AsyncGenerator, Optional

import httpx

from jobpoller.domain.interfaces.credentials import CredentialSource

logger = logging.getLogger(__name__)


class CredentialAuth(httpx.Auth):
    """Attaches `Authorization: Bearer <credential>` when one is available."""

    def __init__(self, credentials: CredentialSource):
        self.credentials = credentials

    def sync_auth_flow(self, request: httpx.Request):
        raise RuntimeError("CredentialAuth only supports httpx.AsyncClient")

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        credential = await self.credentials.get_credential()
        if credential:
            request.headers["Authorization"] = f"Bearer {credential}"
        else:
            logger.debug(f"Sending {request.method} {request.url.path} without credentials.")
        yield request


class ApiClient:
    """Thin wrapper over `httpx.AsyncClient` bound to the remote API root.

    Non-2xx responses are returned as-is; the retry layer decides what counts
    as a failure.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: Optional[float],
        credentials: CredentialSource,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        # 0 or less means no timeout, which httpx spells None.
        self.timeout_seconds = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=self.timeout_seconds,
            auth=CredentialAuth(credentials),
            transport=transport,
        )
        logger.info(f"ApiClient initialized: base_url={base_url}, timeout={self.timeout_seconds}s")

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        logger.debug(f"{method} {path} -> {response.status_code}")
        return response

    async def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
