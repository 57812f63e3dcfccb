"""Tests for outbound request composition and upstream relaying"""

import asyncio
import json

import httpx
import pytest

from uniproxy.errors import ErrorKind, UpstreamUnreachableError
from uniproxy.gateway import (
    ForwardingGateway,
    build_headers,
    build_url,
    safe_response_headers,
)
from uniproxy.providers import ProviderId, default_providers


def _providers():
    return default_providers(
        {
            ProviderId.OPENROUTER: "or-key",
            ProviderId.DEEPSEEK: "ds-key",
            ProviderId.GIGACHAT: "client:secret",
        }
    )


def _forward(handler, provider_id=ProviderId.DEEPSEEK, **kwargs):
    gateway = ForwardingGateway(transport=httpx.MockTransport(handler))
    provider = _providers()[provider_id]
    defaults = {
        "method": "POST",
        "provider": provider,
        "path": "v1/chat/completions",
        "body": b'{"model": "deepseek-chat"}',
        "auth_header": "Bearer ds-key",
    }
    defaults.update(kwargs)

    async def _run():
        try:
            return await gateway.forward(**defaults)
        finally:
            await gateway.aclose()

    return asyncio.run(_run())


class TestBuildUrl:
    def test_joins_with_single_slash(self):
        assert build_url("https://api.deepseek.com/", "/v1/models") == "https://api.deepseek.com/v1/models"

    def test_keeps_base_path(self):
        assert (
            build_url("https://gigachat.devices.sberbank.ru/api/v1", "chat/completions")
            == "https://gigachat.devices.sberbank.ru/api/v1/chat/completions"
        )

    def test_empty_path(self):
        assert build_url("https://openrouter.ai/api/", "") == "https://openrouter.ai/api"


class TestBuildHeaders:
    def test_layer_precedence(self):
        provider = _providers()[ProviderId.OPENROUTER]
        caller = {
            "authorization": "Bearer caller-key",
            "x-title": "caller title",
            "content-type": "text/plain",
            "x-request-id": "abc",
            "host": "localhost:3000",
            "content-length": "12",
        }

        headers = build_headers(provider, "Bearer or-key", caller)

        assert headers == {
            "x-request-id": "abc",
            "HTTP-Referer": "https://openai-proxy-gglw.onrender.com",
            "X-Title": "Corporate AI Proxy",
            "Authorization": "Bearer or-key",
            "Content-Type": "application/json",
        }

    def test_without_caller_headers(self):
        provider = _providers()[ProviderId.DEEPSEEK]
        assert build_headers(provider, "Bearer ds-key") == {
            "Authorization": "Bearer ds-key",
            "Content-Type": "application/json",
        }


def test_safe_response_headers_drops_hop_by_hop():
    headers = safe_response_headers(
        {"Content-Type": "application/json", "Transfer-Encoding": "chunked", "Content-Length": "3"}
    )
    assert headers == [("content-type", "application/json")]


def test_safe_response_headers_keeps_repeated_headers_apart():
    upstream = httpx.Headers([("Set-Cookie", "a=1"), ("Set-Cookie", "b=2"), ("Connection", "close")])
    assert safe_response_headers(upstream) == [("set-cookie", "a=1"), ("set-cookie", "b=2")]


class TestForward:
    def test_relays_success_verbatim(self):
        seen = []

        def _handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "chatcmpl-1"})

        response = _forward(_handler)

        assert response.status_code == 200
        assert json.loads(response.content) == {"id": "chatcmpl-1"}
        request = seen[0]
        assert str(request.url) == "https://api.deepseek.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer ds-key"
        assert request.content == b'{"model": "deepseek-chat"}'

    def test_rate_limit_is_relayed_not_raised(self):
        body = {"error": {"message": "Rate limit exceeded", "code": 429}}

        response = _forward(lambda request: httpx.Response(429, json=body))

        assert response.status_code == 429
        assert json.loads(response.content) == body
        assert not response.is_success

    def test_server_error_is_relayed(self):
        response = _forward(lambda request: httpx.Response(503, text="upstream down"))
        assert response.status_code == 503
        assert response.content == b"upstream down"

    def test_connection_refused(self):
        def _refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        with pytest.raises(UpstreamUnreachableError) as exc_info:
            _forward(_refuse)

        error = exc_info.value
        assert error.kind == ErrorKind.UPSTREAM_UNREACHABLE
        assert error.upstream_status is None
        assert error.http_status == 502
        assert "upstream_status" not in error.to_payload()

    def test_timeout(self):
        def _stall(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(UpstreamUnreachableError) as exc_info:
            _forward(_stall)

        assert exc_info.value.http_status == 504
        assert exc_info.value.to_payload()["error"] == "UpstreamUnreachable"

    def test_error_message_redacts_auth(self):
        def _refuse(request):
            raise httpx.ConnectError(f"refused with {request.headers['Authorization']}", request=request)

        with pytest.raises(UpstreamUnreachableError) as exc_info:
            _forward(_refuse)
        assert "ds-key" not in exc_info.value.message

    def test_get_without_body_and_query_params(self):
        seen = []

        def _handler(request):
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        _forward(_handler, method="get", path="v1/models", body=b"", params=[("limit", "5")])

        request = seen[0]
        assert request.method == "GET"
        assert request.url.params["limit"] == "5"
        assert request.content == b""


def test_build_request_uses_provider_tls_flag():
    gateway = ForwardingGateway(timeout=12.5)
    providers = _providers()

    giga = gateway.build_request(
        "POST", providers[ProviderId.GIGACHAT], "chat/completions", b"{}", "Bearer t"
    )
    deepseek = gateway.build_request(
        "POST", providers[ProviderId.DEEPSEEK], "v1/chat/completions", b"{}", "Bearer k"
    )

    assert giga.verify is False
    assert deepseek.verify is True
    assert giga.timeout == 12.5


def test_client_per_verify_setting():
    gateway = ForwardingGateway()

    async def _run():
        try:
            strict = gateway.client_for(True)
            relaxed = gateway.client_for(False)
            assert strict is not relaxed
            assert gateway.client_for(True) is strict
        finally:
            await gateway.aclose()

    asyncio.run(_run())
