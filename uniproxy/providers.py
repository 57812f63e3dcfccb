"""Provider registry: static per-provider URLs, headers and auth strategy."""

from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .constants import (
    DEEPSEEK_BASE_URL,
    GIGACHAT_AUTH_URL,
    GIGACHAT_BASE_URL,
    GIGACHAT_SCOPE,
    OPENROUTER_BASE_URL,
    OPENROUTER_REFERER,
    OPENROUTER_TITLE,
)


class ProviderId(str, Enum):
    """Known upstream providers. Values double as URL segments and config keys."""

    OPENROUTER = "openrouter"
    DEEPSEEK = "deepseek"
    GIGACHAT = "gigachat"


class AuthStrategy(str, Enum):
    """How the outbound Authorization header is produced."""

    STATIC_BEARER = "static_bearer"
    OAUTH_EXCHANGE = "oauth_exchange"


class ProviderConfig(BaseModel):
    """Immutable description of one upstream provider."""

    model_config = ConfigDict(frozen=True)

    id: ProviderId
    base_url: str
    auth: AuthStrategy = AuthStrategy.STATIC_BEARER
    api_key: Optional[str] = Field(default=None, repr=False)
    headers: Dict[str, str] = Field(default_factory=dict)
    verify_ssl: bool = True
    chat_path: str = "v1/chat/completions"
    models_path: str = "v1/models"
    auth_url: Optional[str] = None  # token endpoint, OAuth providers only
    auth_scope: Optional[str] = None
    display_name: str = ""
    description: str = ""

    @property
    def needs_oauth(self) -> bool:
        return self.auth is AuthStrategy.OAUTH_EXCHANGE

    @property
    def has_secret(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


class ProviderRegistry:
    """Read-only mapping of provider id to its configuration.

    Built once at startup and shared by the selector, gateway and
    credential managers; it is never mutated afterwards.
    """

    def __init__(self, providers: Mapping[ProviderId, ProviderConfig]):
        self._providers: Dict[ProviderId, ProviderConfig] = dict(providers)

    def get(self, provider_id: ProviderId | str) -> ProviderConfig:
        """Return the config for a provider id (enum or its string value)."""
        try:
            key = ProviderId(provider_id)
        except ValueError:
            raise KeyError(provider_id) from None
        if key not in self._providers:
            raise KeyError(provider_id)
        return self._providers[key]

    def __contains__(self, provider_id: object) -> bool:
        try:
            return ProviderId(provider_id) in self._providers
        except ValueError:
            return False

    def __iter__(self) -> Iterator[ProviderConfig]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    @property
    def ids(self) -> List[ProviderId]:
        return list(self._providers.keys())

    def oauth_providers(self) -> List[ProviderConfig]:
        return [p for p in self._providers.values() if p.needs_oauth]


def default_providers(
    secrets: Optional[Mapping[ProviderId, Optional[str]]] = None,
) -> Dict[ProviderId, ProviderConfig]:
    """Built-in provider definitions, with secrets filled in when given."""
    secrets = secrets or {}
    return {
        ProviderId.OPENROUTER: ProviderConfig(
            id=ProviderId.OPENROUTER,
            base_url=OPENROUTER_BASE_URL,
            api_key=secrets.get(ProviderId.OPENROUTER),
            headers={
                "HTTP-Referer": OPENROUTER_REFERER,
                "X-Title": OPENROUTER_TITLE,
            },
            display_name="OpenRouter",
            description="OpenRouter (330+ models)",
        ),
        ProviderId.DEEPSEEK: ProviderConfig(
            id=ProviderId.DEEPSEEK,
            base_url=DEEPSEEK_BASE_URL,
            api_key=secrets.get(ProviderId.DEEPSEEK),
            display_name="DeepSeek",
            description="DeepSeek (deepseek-chat, deepseek-coder)",
        ),
        ProviderId.GIGACHAT: ProviderConfig(
            id=ProviderId.GIGACHAT,
            base_url=GIGACHAT_BASE_URL,
            auth=AuthStrategy.OAUTH_EXCHANGE,
            api_key=secrets.get(ProviderId.GIGACHAT),
            # Sber's endpoints are signed by the Russian Trusted Root CA,
            # which is missing from most trust stores.
            verify_ssl=False,
            chat_path="chat/completions",
            models_path="models",
            auth_url=GIGACHAT_AUTH_URL,
            auth_scope=GIGACHAT_SCOPE,
            display_name="GigaChat",
            description="GigaChat (GigaChat-Pro, GigaChat-Max)",
        ),
    }
