import asyncio
import logging
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import FakeApi, fail_connect, respond
from jobpoller.infrastructure.auth.credential_provider import CredentialProvider, TokenCache

TOKEN_PATH = "/realms/acme/protocol/openid-connect/token"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def idp():
    return FakeApi()


def make_provider(idp, clock, **overrides):
    config = dict(
        issuer_url="http://idp.test/",
        realm="acme",
        client_id="poller",
        client_secret="s3cret",
    )
    config.update(overrides)
    return CredentialProvider(cache=TokenCache(clock=clock), transport=idp.transport, **config)


def test_static_key_wins_and_never_calls_token_endpoint(idp, clock):
    idp.add("POST", TOKEN_PATH, respond(json={"access_token": "tok", "expires_in": 300}))
    provider = make_provider(idp, clock, api_key="static-key")

    assert asyncio.run(provider.get_credential()) == "static-key"
    assert asyncio.run(provider.get_credential()) == "static-key"
    assert idp.requests == []
    assert provider.cache.token is None


def test_fetches_token_once_and_reuses_it_until_expiry(idp, clock):
    idp.add(
        "POST", TOKEN_PATH,
        respond(json={"access_token": "first", "expires_in": 300}),
        respond(json={"access_token": "second", "expires_in": 300}),
    )
    provider = make_provider(idp, clock)
    fetched_at = clock.now

    assert asyncio.run(provider.get_credential()) == "first"
    assert provider.cache.token.expires_at == fetched_at + 270

    clock.now = fetched_at + 269
    assert asyncio.run(provider.get_credential()) == "first"
    assert len(idp.requests) == 1

    clock.now = fetched_at + 270
    assert asyncio.run(provider.get_credential()) == "second"
    assert len(idp.requests) == 2


def test_token_request_uses_client_credentials_form(idp, clock):
    idp.add("POST", TOKEN_PATH, respond(json={"access_token": "tok", "expires_in": 60}))
    provider = make_provider(idp, clock)

    asyncio.run(provider.get_credential())

    request = idp.requests[0]
    assert str(request.url) == "http://idp.test" + TOKEN_PATH
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    assert parse_qs(request.content.decode()) == {
        "grant_type": ["client_credentials"],
        "client_id": ["poller"],
        "client_secret": ["s3cret"],
    }


def test_missing_expires_in_defaults_to_five_minutes(idp, clock):
    idp.add("POST", TOKEN_PATH, respond(json={"access_token": "tok"}))
    provider = make_provider(idp, clock)

    asyncio.run(provider.get_credential())

    assert provider.cache.token.expires_at == clock.now + 270


@pytest.mark.parametrize(
    "handler",
    [
        respond(json={"token_type": "bearer"}),
        respond(text="<html>oops</html>"),
        respond(status=401, json={"error": "invalid_client"}),
        fail_connect,
    ],
    ids=["missing-access-token", "not-json", "error-status", "network-error"],
)
def test_fetch_failure_returns_none_and_warns(idp, clock, caplog, handler):
    idp.add("POST", TOKEN_PATH, handler)
    provider = make_provider(idp, clock)

    with caplog.at_level(logging.WARNING):
        assert asyncio.run(provider.get_credential()) is None

    assert "Failed to fetch access token" in caplog.text
    assert provider.cache.token is None


def test_incomplete_configuration_warns_and_stays_offline(idp, clock, caplog):
    with caplog.at_level(logging.WARNING):
        provider = make_provider(idp, clock, client_secret="")

    assert "will be unauthenticated" in caplog.text
    assert asyncio.run(provider.get_credential()) is None
    assert idp.requests == []


def test_concurrent_refresh_fetches_a_single_token(idp, clock):
    idp.add("POST", TOKEN_PATH, respond(json={"access_token": "tok", "expires_in": 300}))
    provider = make_provider(idp, clock)

    async def resolve_many():
        return await asyncio.gather(*(provider.get_credential() for _ in range(5)))

    assert asyncio.run(resolve_many()) == ["tok"] * 5
    assert len(idp.requests) == 1
