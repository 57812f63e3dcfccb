"""OAuth token lifecycle for providers that exchange a secret for a bearer token.

GigaChat issues 30 minute access tokens from a separate auth endpoint. The
manager caches one token per provider, refreshes it on demand and never
serves it past its own fixed TTL, whatever expiry the provider reports.
"""

import asyncio
import base64
import binascii
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from .constants import AUTH_TIMEOUT, SECRET_ENV_VARS, TOKEN_TTL_SECONDS
from .errors import CredentialExchangeFailedError, MisconfiguredSecretError
from .providers import ProviderConfig, ProviderId
from .redaction import preview_secret, sanitize_error_message

logger = logging.getLogger(__name__)

_BASIC_PREFIX = "basic"


class TokenState(str, Enum):
    NO_TOKEN = "NoToken"
    VALID = "Valid"
    EXPIRED = "Expired"


@dataclass(frozen=True)
class CachedToken:
    """A bearer token and the absolute time it stops being served."""

    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


def _secret_name(provider_id: Optional[str]) -> str:
    if provider_id is None:
        return "provider secret"
    return SECRET_ENV_VARS.get(provider_id, f"{provider_id} secret")


def _require_base64(value: str, provider_id: Optional[str]) -> None:
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise MisconfiguredSecretError(
            f"{_secret_name(provider_id)} is neither 'client_id:client_secret' "
            "nor a valid base64 authorization key",
            provider=provider_id,
        ) from None


def describe_secret_format(secret: Optional[str]) -> str:
    """Name the encoding a secret was given in, without validating it."""
    if not secret or not secret.strip():
        return "missing"
    value = secret.strip()
    lowered = value.lower()
    if lowered == _BASIC_PREFIX or lowered.startswith(_BASIC_PREFIX + " "):
        return "basic_header"
    if ":" in value:
        return "client_credentials"
    return "base64_key"


def encode_basic_secret(secret: Optional[str], provider_id: Optional[str] = None) -> str:
    """Turn a configured secret into an ``Authorization: Basic`` header value.

    Accepted forms:
      - ``Basic <base64>``: used as-is
      - ``client_id:client_secret``: base64-encoded, then prefixed
      - ``<base64>``: prefixed

    Anything else raises MisconfiguredSecretError instead of producing a
    header the auth endpoint would reject.
    """
    secret_format = describe_secret_format(secret)
    if secret_format == "missing":
        raise MisconfiguredSecretError(
            f"{_secret_name(provider_id)} is not set", provider=provider_id
        )

    value = secret.strip()
    if secret_format == "basic_header":
        encoded = value[len(_BASIC_PREFIX) :].strip()
        if not encoded:
            raise MisconfiguredSecretError(
                f"{_secret_name(provider_id)} has a 'Basic' prefix but no key",
                provider=provider_id,
            )
        _require_base64(encoded, provider_id)
        return value

    if secret_format == "client_credentials":
        client_id, _, client_secret = value.partition(":")
        if not client_id or not client_secret:
            raise MisconfiguredSecretError(
                f"{_secret_name(provider_id)} must be 'client_id:client_secret' "
                "with both parts non-empty",
                provider=provider_id,
            )
        return "Basic " + base64.b64encode(value.encode("utf-8")).decode("ascii")

    _require_base64(value, provider_id)
    return f"Basic {value}"


def _response_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None


class CredentialManager:
    """Issues, caches and refreshes the bearer token of one OAuth provider.

    The cached token is an immutable CachedToken swapped in with a single
    assignment, so readers never see a token paired with another token's
    expiry. Refreshes run under an asyncio.Lock and re-check the cache once
    the lock is held, which folds concurrent refreshes into one exchange.
    """

    def __init__(
        self,
        provider: ProviderConfig,
        client_for: Callable[[bool], httpx.AsyncClient],
        ttl_seconds: float = TOKEN_TTL_SECONDS,
        timeout: float = AUTH_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        if not provider.needs_oauth:
            raise ValueError(f"Provider '{provider.id.value}' does not use OAuth exchange")
        if not provider.auth_url:
            raise ValueError(f"Provider '{provider.id.value}' has no auth_url configured")
        self.provider = provider
        self._client_for = client_for
        self._ttl = ttl_seconds
        self._timeout = timeout
        self._clock = clock
        self._cached: Optional[CachedToken] = None
        self._lock = asyncio.Lock()
        self._issued_once = False
        self.exchange_count = 0

    @property
    def state(self) -> TokenState:
        cached = self._cached
        if cached is None:
            return TokenState.EXPIRED if self._issued_once else TokenState.NO_TOKEN
        if cached.is_valid(self._clock()):
            return TokenState.VALID
        return TokenState.EXPIRED

    @property
    def cached_token(self) -> Optional[CachedToken]:
        return self._cached

    async def get_token(self) -> str:
        """Return a valid bearer token, exchanging the secret if needed."""
        cached = self._cached
        if cached is not None and cached.is_valid(self._clock()):
            return cached.token

        async with self._lock:
            cached = self._cached
            if cached is not None and cached.is_valid(self._clock()):
                # Another request refreshed while we waited for the lock.
                return cached.token

            self._cached = None
            token = await self._exchange()
            self._cached = CachedToken(token=token, expires_at=self._clock() + self._ttl)
            self._issued_once = True
            logger.info(
                "[credentials] %s token refreshed (len=%d, ttl=%ds)",
                self.provider.id.value,
                len(token),
                int(self._ttl),
            )
            return token

    async def authorization_header(self) -> str:
        return f"Bearer {await self.get_token()}"

    async def _exchange(self) -> str:
        provider_id = self.provider.id.value
        basic = encode_basic_secret(self.provider.api_key, provider_id)
        headers = {
            "Authorization": basic,
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "RqUID": str(uuid.uuid4()),
        }
        data = {"scope": self.provider.auth_scope} if self.provider.auth_scope else {}

        self.exchange_count += 1
        client = self._client_for(self.provider.verify_ssl)
        try:
            response = await client.post(
                self.provider.auth_url,
                data=data,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
            )
        except httpx.HTTPError as e:
            message = sanitize_error_message(e, [self.provider.api_key or "", basic])
            logger.error("[credentials] %s token endpoint unreachable: %s", provider_id, message)
            raise CredentialExchangeFailedError(
                f"Token endpoint unreachable: {message or type(e).__name__}",
                provider=provider_id,
            ) from e

        payload = _response_payload(response)
        if not response.is_success:
            logger.error(
                "[credentials] %s token exchange rejected: status=%d",
                provider_id,
                response.status_code,
            )
            raise CredentialExchangeFailedError(
                "Token endpoint rejected the credentials",
                provider=provider_id,
                upstream_status=response.status_code,
                details=payload,
            )

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            logger.error("[credentials] %s token response has no access_token", provider_id)
            raise CredentialExchangeFailedError(
                "Token endpoint response did not contain an access_token",
                provider=provider_id,
                upstream_status=response.status_code,
            )
        return token

    async def diagnostics(self) -> Dict[str, Any]:
        """Obtain a token and describe it without revealing it."""
        token = await self.get_token()
        cached = self._cached
        expires_in = None
        if cached is not None:
            expires_in = max(0, int(cached.expires_at - self._clock()))
        return {
            "provider": self.provider.id.value,
            "state": self.state.value,
            "secret_format": describe_secret_format(self.provider.api_key),
            "token_preview": preview_secret(token),
            "token_length": len(token),
            "expires_in_seconds": expires_in,
            "exchange_count": self.exchange_count,
        }


async def resolve_auth_header(
    provider: ProviderConfig, credentials: Mapping[ProviderId, CredentialManager]
) -> str:
    """Build the outbound Authorization header for a provider."""
    if provider.needs_oauth:
        manager = credentials.get(provider.id)
        if manager is None:
            raise MisconfiguredSecretError(
                f"No credential manager configured for '{provider.id.value}'",
                provider=provider.id.value,
            )
        return await manager.authorization_header()

    if not provider.has_secret:
        raise MisconfiguredSecretError(
            f"{_secret_name(provider.id.value)} is not set", provider=provider.id.value
        )
    return f"Bearer {provider.api_key.strip()}"
