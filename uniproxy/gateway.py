"""Forwarding gateway: composes outbound requests and relays upstream replies."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

from .constants import DROPPED_REQUEST_HEADERS, REQUEST_TIMEOUT, UNSAFE_RESPONSE_HEADERS
from .errors import ErrorKind, UpstreamUnreachableError
from .providers import ProviderConfig
from .redaction import sanitize_error_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutboundRequest:
    """One upstream call, built per inbound request and then discarded."""

    method: str
    url: str
    headers: Dict[str, str]
    body: bytes = b""
    timeout: float = REQUEST_TIMEOUT
    params: Optional[httpx.QueryParams] = None
    verify: bool = True


@dataclass
class UpstreamResponse:
    """Upstream status, body and headers, relayed to the caller unchanged."""

    status_code: int
    content: bytes
    headers: List[Tuple[str, str]] = field(default_factory=list)
    latency_ms: float = 0.0

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


def build_url(base_url: str, path: str) -> str:
    """Join a provider base URL and a request path with exactly one slash."""
    path = path.lstrip("/")
    if not path:
        return base_url.rstrip("/")
    return f"{base_url.rstrip('/')}/{path}"


def _set_header(headers: Dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing key that differs only in case."""
    needle = name.lower()
    for key in list(headers.keys()):
        if key.lower() == needle:
            del headers[key]
    headers[name] = value


def build_headers(
    provider: ProviderConfig,
    auth_header: str,
    caller_headers: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Merge outbound header layers, lowest precedence first.

    caller headers (pass-through only) < provider static headers
    < Authorization < Content-Type default.
    """
    headers: Dict[str, str] = {}
    for key, value in (caller_headers or {}).items():
        if key.lower() in DROPPED_REQUEST_HEADERS:
            continue
        headers[key] = value
    for key, value in provider.headers.items():
        _set_header(headers, key, value)
    _set_header(headers, "Authorization", auth_header)
    _set_header(headers, "Content-Type", "application/json")
    return headers


def safe_response_headers(headers: Mapping[str, str]) -> List[Tuple[str, str]]:
    """Filter unsafe hop-by-hop and encoding-specific upstream headers.

    Repeated headers such as Set-Cookie stay as separate pairs.
    """
    return [
        (key, value)
        for key, value in httpx.Headers(headers).multi_items()
        if key.lower() not in UNSAFE_RESPONSE_HEADERS
    ]


class ForwardingGateway:
    """Issues upstream calls with per-call timeouts and no retries.

    Holds one httpx.AsyncClient per TLS verification setting, created on
    first use, so providers that need relaxed verification do not weaken
    the others.
    """

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport
        self._clients: Dict[bool, httpx.AsyncClient] = {}

    def client_for(self, verify: bool) -> httpx.AsyncClient:
        client = self._clients.get(verify)
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                verify=verify,
                transport=self._transport,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=False,
            )
            self._clients[verify] = client
        return client

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    def build_request(
        self,
        method: str,
        provider: ProviderConfig,
        path: str,
        body: bytes,
        auth_header: str,
        caller_headers: Optional[Mapping[str, str]] = None,
        params: Any = None,
    ) -> OutboundRequest:
        return OutboundRequest(
            method=method.upper(),
            url=build_url(provider.base_url, path),
            headers=build_headers(provider, auth_header, caller_headers),
            body=body or b"",
            timeout=self.timeout,
            params=httpx.QueryParams(params) if params else None,
            verify=provider.verify_ssl,
        )

    async def send(self, outbound: OutboundRequest, provider_id: str) -> UpstreamResponse:
        """Perform the call. Any HTTP status is a result, not an error."""
        client = self.client_for(outbound.verify)
        start_time = time.monotonic()
        try:
            response = await client.request(
                outbound.method,
                outbound.url,
                headers=outbound.headers,
                content=outbound.body or None,
                params=outbound.params,
                timeout=httpx.Timeout(outbound.timeout),
            )
        except httpx.TimeoutException as e:
            logger.error("[upstream] %s timed out after %.0fs: %s", provider_id, outbound.timeout, outbound.url)
            raise UpstreamUnreachableError(
                f"Upstream request timed out after {outbound.timeout:g}s",
                provider=provider_id,
                timed_out=True,
            ) from e
        except httpx.HTTPError as e:
            auth = outbound.headers.get("Authorization", "")
            message = sanitize_error_message(e, [auth])
            logger.error("[upstream] %s unreachable: %s", provider_id, message)
            raise UpstreamUnreachableError(
                f"Upstream unreachable: {message or type(e).__name__}",
                provider=provider_id,
            ) from e

        latency_ms = (time.monotonic() - start_time) * 1000
        result = UpstreamResponse(
            status_code=response.status_code,
            content=response.content,
            headers=safe_response_headers(response.headers),
            latency_ms=latency_ms,
        )
        if result.is_success:
            logger.info(
                "[upstream] %s %s -> %d (%.0fms)",
                provider_id,
                outbound.method,
                result.status_code,
                latency_ms,
            )
        else:
            # Relayed verbatim; logged so operators can tell it apart from proxy failures.
            logger.warning(
                "[upstream] %s %s -> %d kind=%s (%.0fms)",
                provider_id,
                outbound.method,
                result.status_code,
                ErrorKind.UPSTREAM_REJECTED.value,
                latency_ms,
            )
        return result

    async def forward(
        self,
        method: str,
        provider: ProviderConfig,
        path: str,
        body: bytes,
        auth_header: str,
        caller_headers: Optional[Mapping[str, str]] = None,
        params: Any = None,
    ) -> UpstreamResponse:
        outbound = self.build_request(
            method, provider, path, body, auth_header, caller_headers, params
        )
        logger.debug("[upstream] target url: %s", outbound.url)
        return await self.send(outbound, provider.id.value)
