"""Pipeline steps for one proxied request.

Each step takes a RequestContext and fills in its part of it. Infrastructure
(registry, credential managers, gateway) is passed in explicitly.
"""

from __future__ import annotations

import dataclasses
import logging
import time
import uuid
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Tuple

from .credentials import resolve_auth_header
from .selector import model_from_body, select_provider

if TYPE_CHECKING:
    from .config import Config
    from .credentials import CredentialManager
    from .gateway import ForwardingGateway, UpstreamResponse
    from .providers import ProviderConfig, ProviderId, ProviderRegistry

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class RequestContext:
    """Carries the state of one inbound call through the pipeline."""

    # Inputs (set once)
    method: str
    path: str
    body: bytes = b""
    caller_headers: Dict[str, str] = dataclasses.field(default_factory=dict)
    query_params: List[Tuple[str, str]] = dataclasses.field(default_factory=list)
    pinned_provider: Optional["ProviderId"] = None  # direct routes fix the provider
    request_id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))
    start_time: float = dataclasses.field(default_factory=time.monotonic)

    # Step 1: provider resolution
    requested_model: Optional[str] = None
    provider_id: Optional["ProviderId"] = None
    provider: Optional["ProviderConfig"] = None

    # Step 2: authorization
    auth_header: Optional[str] = None

    # Step 3: forwarding
    response: Optional["UpstreamResponse"] = None

    @property
    def is_pass_through(self) -> bool:
        return self.pinned_provider is None

    @property
    def latency_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000


def resolve_provider(
    ctx: RequestContext, config: "Config", registry: "ProviderRegistry"
) -> None:
    """Fix the target provider: pinned by the route, or selected by model."""
    ctx.requested_model = model_from_body(ctx.body)
    if ctx.pinned_provider is not None:
        ctx.provider_id = ctx.pinned_provider
    else:
        ctx.provider_id = select_provider(
            ctx.requested_model, default=config.proxy.default_provider
        )
    ctx.provider = registry.get(ctx.provider_id)
    logger.info(
        "[routing] %s %s -> %s (model=%s%s)",
        ctx.method,
        ctx.path,
        ctx.provider_id.value,
        ctx.requested_model,
        "" if ctx.is_pass_through else ", direct",
    )


async def authorize(
    ctx: RequestContext, credentials: Mapping["ProviderId", "CredentialManager"]
) -> None:
    """Compute the Authorization header; OAuth providers go through their manager."""
    if ctx.provider is None:
        raise RuntimeError("resolve_provider must run before authorize")
    ctx.auth_header = await resolve_auth_header(ctx.provider, credentials)


async def forward_request(ctx: RequestContext, gateway: "ForwardingGateway") -> None:
    """Send the request upstream and store the relayed response."""
    if ctx.provider is None or ctx.auth_header is None:
        raise RuntimeError("resolve_provider and authorize must run before forward_request")
    ctx.response = await gateway.forward(
        ctx.method,
        ctx.provider,
        ctx.path,
        ctx.body,
        ctx.auth_header,
        caller_headers=ctx.caller_headers if ctx.is_pass_through else None,
        params=ctx.query_params or None,
    )
