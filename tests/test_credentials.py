"""Tests for secret encoding and the OAuth token cache"""

import asyncio
import base64
from urllib.parse import parse_qs

import httpx
import pytest

from uniproxy.credentials import (
    CredentialManager,
    TokenState,
    describe_secret_format,
    encode_basic_secret,
    resolve_auth_header,
)
from uniproxy.errors import (
    CredentialExchangeFailedError,
    ErrorKind,
    MisconfiguredSecretError,
)
from uniproxy.providers import ProviderId, default_providers

TTL = 25 * 60
ENCODED = base64.b64encode(b"client:secret").decode()


class _Clock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class _TokenEndpoint:
    """Token endpoint stub issuing token-1, token-2, ..."""

    def __init__(self, status_code: int = 200, payload=None, delay: float = 0.0):
        self.status_code = status_code
        self.payload = payload
        self.delay = delay
        self.requests = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        payload = self.payload
        if payload is None:
            payload = {
                "access_token": f"token-{len(self.requests)}",
                # Provider-reported expiry far beyond our own TTL; must be ignored.
                "expires_at": 99_999_999_999_999,
            }
        return httpx.Response(self.status_code, json=payload)


def _provider(secret="client:secret", **updates):
    provider = default_providers({ProviderId.GIGACHAT: secret})[ProviderId.GIGACHAT]
    return provider.model_copy(update=updates) if updates else provider


def _manager(handler, clock=None, provider=None) -> CredentialManager:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CredentialManager(
        provider or _provider(),
        lambda verify: client,
        clock=clock or _Clock(),
    )


class TestEncodeBasicSecret:
    """Tests for the three accepted secret encodings"""

    def test_client_credentials_are_base64_encoded(self):
        assert encode_basic_secret("client:secret") == f"Basic {ENCODED}"

    def test_raw_key_is_prefixed(self):
        assert encode_basic_secret(ENCODED) == f"Basic {ENCODED}"

    def test_prefixed_value_used_as_is(self):
        assert encode_basic_secret(f"Basic {ENCODED}") == f"Basic {ENCODED}"

    def test_prefix_is_case_insensitive(self):
        assert encode_basic_secret(f"basic {ENCODED}") == f"basic {ENCODED}"

    def test_surrounding_whitespace_is_stripped(self):
        assert encode_basic_secret(f"  {ENCODED}\n") == f"Basic {ENCODED}"

    @pytest.mark.parametrize("secret", [None, "", "   "])
    def test_missing_secret(self, secret):
        with pytest.raises(MisconfiguredSecretError, match="GIGACHAT_KEY is not set"):
            encode_basic_secret(secret, "gigachat")

    @pytest.mark.parametrize("secret", [":secret", "client:", ":"])
    def test_incomplete_client_credentials(self, secret):
        with pytest.raises(MisconfiguredSecretError, match="both parts non-empty"):
            encode_basic_secret(secret)

    @pytest.mark.parametrize("secret", ["not base64!!", "abc", "Basic ???"])
    def test_invalid_base64(self, secret):
        with pytest.raises(MisconfiguredSecretError):
            encode_basic_secret(secret)

    def test_prefix_without_key(self):
        with pytest.raises(MisconfiguredSecretError, match="no key"):
            encode_basic_secret("Basic    ")

    def test_error_never_contains_secret(self):
        with pytest.raises(MisconfiguredSecretError) as exc_info:
            encode_basic_secret("super-secret-value!", "gigachat")
        assert "super-secret-value" not in str(exc_info.value)
        assert exc_info.value.kind == ErrorKind.MISCONFIGURED_SECRET

    def test_describe_secret_format(self):
        assert describe_secret_format(None) == "missing"
        assert describe_secret_format("a:b") == "client_credentials"
        assert describe_secret_format(ENCODED) == "base64_key"
        assert describe_secret_format(f"Basic {ENCODED}") == "basic_header"


class TestCredentialManager:
    """Tests for the token cache state machine"""

    def test_starts_without_token(self):
        manager = _manager(_TokenEndpoint())
        assert manager.state == TokenState.NO_TOKEN
        assert manager.cached_token is None

    def test_exchange_request_shape(self):
        endpoint = _TokenEndpoint()
        manager = _manager(endpoint)

        token = asyncio.run(manager.get_token())

        assert token == "token-1"
        request = endpoint.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://ngw.devices.sberbank.ru:9443/api/v2/oauth"
        assert request.headers["Authorization"] == f"Basic {ENCODED}"
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert request.headers["RqUID"]
        assert parse_qs(request.content.decode()) == {"scope": ["GIGACHAT_API_PERS"]}

    def test_cache_hit_makes_no_network_call(self):
        endpoint = _TokenEndpoint()
        clock = _Clock()
        manager = _manager(endpoint, clock)

        first = asyncio.run(manager.get_token())
        clock.now += TTL - 1
        second = asyncio.run(manager.get_token())

        assert first == second == "token-1"
        assert len(endpoint.requests) == 1
        assert manager.state == TokenState.VALID

    def test_refresh_after_expiry_issues_exactly_one_exchange(self):
        endpoint = _TokenEndpoint()
        clock = _Clock()
        manager = _manager(endpoint, clock)

        asyncio.run(manager.get_token())
        clock.now += TTL
        assert manager.state == TokenState.EXPIRED

        token = asyncio.run(manager.get_token())

        assert token == "token-2"
        assert len(endpoint.requests) == 2
        cached = manager.cached_token
        assert cached.token == "token-2"
        assert cached.expires_at == clock.now + TTL

    def test_fixed_ttl_ignores_provider_expiry(self):
        clock = _Clock(now=5_000.0)
        manager = _manager(_TokenEndpoint(), clock)

        asyncio.run(manager.get_token())

        assert manager.cached_token.expires_at == 5_000.0 + TTL
        clock.now = 5_000.0 + TTL
        assert manager.state == TokenState.EXPIRED

    def test_short_provider_expiry_is_not_used_either(self):
        endpoint = _TokenEndpoint(payload={"access_token": "short", "expires_at": 1})
        clock = _Clock()
        manager = _manager(endpoint, clock)

        asyncio.run(manager.get_token())
        clock.now += 60

        assert asyncio.run(manager.get_token()) == "short"
        assert len(endpoint.requests) == 1

    def test_concurrent_refreshes_are_coalesced(self):
        endpoint = _TokenEndpoint(delay=0.05)
        manager = _manager(endpoint)

        async def _run():
            return await asyncio.gather(*(manager.get_token() for _ in range(5)))

        tokens = asyncio.run(_run())

        assert tokens == ["token-1"] * 5
        assert len(endpoint.requests) == 1
        assert manager.exchange_count == 1

    def test_rejected_exchange_raises_and_keeps_cache_empty(self):
        endpoint = _TokenEndpoint(
            status_code=401, payload={"code": 6, "message": "credentials doesn't match db data"}
        )
        manager = _manager(endpoint)

        with pytest.raises(CredentialExchangeFailedError) as exc_info:
            asyncio.run(manager.get_token())

        error = exc_info.value
        assert error.upstream_status == 401
        assert error.details == {"code": 6, "message": "credentials doesn't match db data"}
        assert error.http_status == 502
        assert manager.cached_token is None
        assert manager.state == TokenState.NO_TOKEN

    def test_failed_refresh_drops_expired_token(self):
        endpoint = _TokenEndpoint()
        clock = _Clock()
        manager = _manager(endpoint, clock)
        asyncio.run(manager.get_token())

        clock.now += TTL
        endpoint.status_code = 500
        endpoint.payload = {"error": "down"}
        with pytest.raises(CredentialExchangeFailedError):
            asyncio.run(manager.get_token())

        assert manager.cached_token is None
        assert manager.state == TokenState.EXPIRED

    def test_unreachable_token_endpoint(self):
        def _refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        manager = _manager(_refuse)

        with pytest.raises(CredentialExchangeFailedError) as exc_info:
            asyncio.run(manager.get_token())
        assert exc_info.value.upstream_status is None
        assert "unreachable" in exc_info.value.message

    def test_missing_access_token(self):
        manager = _manager(_TokenEndpoint(payload={"expires_at": 1}))

        with pytest.raises(CredentialExchangeFailedError, match="access_token"):
            asyncio.run(manager.get_token())

    def test_misconfigured_secret_skips_network(self):
        endpoint = _TokenEndpoint()
        manager = _manager(endpoint, provider=_provider(secret=None))

        with pytest.raises(MisconfiguredSecretError):
            asyncio.run(manager.get_token())
        assert endpoint.requests == []

    def test_diagnostics_do_not_reveal_token(self):
        long_token = "eyJhbGciOiJIUzI1NiJ9." + "x" * 64
        manager = _manager(_TokenEndpoint(payload={"access_token": long_token}))

        info = asyncio.run(manager.diagnostics())

        assert info["token_length"] == len(long_token)
        assert info["token_preview"] == long_token[:8] + "..."
        assert long_token not in str(info)
        assert info["state"] == "Valid"
        assert info["secret_format"] == "client_credentials"
        assert info["expires_in_seconds"] == TTL
        assert info["exchange_count"] == 1

    def test_rejects_static_bearer_provider(self):
        provider = default_providers()[ProviderId.DEEPSEEK]
        with pytest.raises(ValueError, match="does not use OAuth"):
            CredentialManager(provider, lambda verify: None)


class TestResolveAuthHeader:
    """Tests for resolve_auth_header"""

    def test_static_bearer(self):
        provider = default_providers({ProviderId.DEEPSEEK: "ds-key"})[ProviderId.DEEPSEEK]
        assert asyncio.run(resolve_auth_header(provider, {})) == "Bearer ds-key"

    def test_static_bearer_missing_key(self):
        provider = default_providers()[ProviderId.DEEPSEEK]
        with pytest.raises(MisconfiguredSecretError, match="DEEPSEEK_KEY"):
            asyncio.run(resolve_auth_header(provider, {}))

    def test_oauth_uses_manager(self):
        manager = _manager(_TokenEndpoint())
        header = asyncio.run(resolve_auth_header(manager.provider, {ProviderId.GIGACHAT: manager}))
        assert header == "Bearer token-1"

    def test_oauth_without_manager(self):
        with pytest.raises(MisconfiguredSecretError):
            asyncio.run(resolve_auth_header(_provider(), {}))
