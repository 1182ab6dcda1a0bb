"""Resolves the bearer credential sent to the remote API.

A configured static API key always wins. Otherwise an OAuth2 access token is
obtained from the identity provider with the client-credentials grant and
cached until shortly before it expires.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

from jobpoller.domain.interfaces.credentials import CredentialSource
from jobpoller.domain.models.common import CachedToken, Credential, TokenResponse

logger = logging.getLogger(__name__)

TOKEN_PATH_TEMPLATE = "{issuer}/realms/{realm}/protocol/openid-connect/token"
TOKEN_FETCH_TIMEOUT_S = 10.0
TOKEN_EXPIRY_MARGIN_S = 30
DEFAULT_EXPIRES_IN_S = 300


class TokenFetchError(Exception):
    """The identity provider did not hand out a usable token."""


class TokenCache:
    """Holds the most recent access token for the lifetime of the process."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._token: Optional[CachedToken] = None

    @property
    def token(self) -> Optional[CachedToken]:
        return self._token

    def get_valid(self) -> Optional[str]:
        """Returns the cached token value unless it is missing or expired."""
        if self._token and self._token.is_valid(self._clock()):
            return self._token.access_token
        return None

    def store(self, access_token: str, expires_in: float) -> CachedToken:
        """Caches a token, expiring it a little before the server says so."""
        self._token = CachedToken(
            access_token=access_token,
            expires_at=self._clock() + expires_in - TOKEN_EXPIRY_MARGIN_S,
        )
        return self._token


class CredentialProvider(CredentialSource):
    """Static key or cached client-credentials token, never raising."""

    def __init__(
        self,
        api_key: str = "",
        issuer_url: str = "",
        realm: str = "",
        client_id: str = "",
        client_secret: str = "",
        cache: Optional[TokenCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        fetch_timeout_s: float = TOKEN_FETCH_TIMEOUT_S,
    ):
        """Initializes the provider.

        Args:
            api_key: Static bearer credential. When set, no token is ever fetched.
            issuer_url: Identity provider base URL.
            realm: Realm holding the client.
            client_id: OAuth2 client id.
            client_secret: OAuth2 client secret.
            cache: Token cache to use (a fresh one if None).
            transport: Optional httpx transport, used by tests.
            fetch_timeout_s: Timeout for the token request.
        """
        self.api_key = api_key
        self.issuer_url = issuer_url
        self.realm = realm
        self.client_id = client_id
        self.client_secret = client_secret
        self.cache = cache or TokenCache()
        self.fetch_timeout_s = fetch_timeout_s
        self._transport = transport
        self._refresh_lock = asyncio.Lock()

        if self.api_key:
            logger.info("Using static API key for remote API calls.")
        elif self.has_client_credentials:
            logger.info(f"Using client-credentials grant against realm '{self.realm}' as '{self.client_id}'.")
        else:
            logger.warning(
                "No API_KEY or Keycloak client-credentials configured. "
                "Scheduler calls will be unauthenticated."
            )

    @property
    def has_client_credentials(self) -> bool:
        return all((self.issuer_url, self.realm, self.client_id, self.client_secret))

    @property
    def token_url(self) -> str:
        return TOKEN_PATH_TEMPLATE.format(issuer=self.issuer_url.rstrip("/"), realm=self.realm)

    async def get_credential(self) -> Optional[Credential]:
        if self.api_key:
            return Credential(self.api_key)

        cached = self.cache.get_valid()
        if cached:
            return Credential(cached)

        if not self.has_client_credentials:
            return None

        async with self._refresh_lock:
            # Another caller may have refreshed while we waited for the lock.
            cached = self.cache.get_valid()
            if cached:
                return Credential(cached)
            try:
                return Credential(await self.fetch_access_token())
            except Exception as e:
                logger.warning(f"Failed to fetch access token from Keycloak: {type(e).__name__}: {e}")
                return None

    async def fetch_access_token(self) -> str:
        """Requests a new token and stores it in the cache.

        Raises:
            httpx.HTTPError: On network errors or a non-2xx answer.
            ValueError: If the body is not JSON.
            TokenFetchError: If the body carries no access_token.
        """
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        async with httpx.AsyncClient(timeout=self.fetch_timeout_s, transport=self._transport) as client:
            response = await client.post(self.token_url, data=data)
            response.raise_for_status()
            payload: TokenResponse = response.json()

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenFetchError("Token endpoint response did not contain an access_token")

        expires_in = payload.get("expires_in") or DEFAULT_EXPIRES_IN_S
        token = self.cache.store(str(payload["access_token"]), float(expires_in))
        logger.debug(f"Access token refreshed, valid until {token.expires_at:.0f}.")
        return token.access_token
