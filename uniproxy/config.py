"""Configuration loading and validation"""

import logging
import os
import re
from typing import Any, Dict, Optional

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import AUTH_TIMEOUT, REQUEST_TIMEOUT, SECRET_ENV_VARS, TOKEN_TTL_SECONDS
from .credentials import encode_basic_secret
from .errors import MisconfiguredSecretError
from .providers import (
    AuthStrategy,
    ProviderConfig,
    ProviderId,
    ProviderRegistry,
    default_providers,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class ServeConfig(BaseModel):
    """Server configuration"""

    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    api_key: Optional[str] = None  # inbound bearer key; None disables auth


class ProxySettings(BaseModel):
    """Routing and upstream call settings"""

    default_provider: ProviderId = ProviderId.OPENROUTER
    request_timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)
    auth_timeout: float = Field(default=AUTH_TIMEOUT, gt=0)
    token_ttl_seconds: float = Field(default=TOKEN_TTL_SECONDS, gt=0)


class ExchangeLogConfig(BaseModel):
    """JSONL exchange log settings"""

    directory: Optional[str] = None  # None disables the log
    log_message_content: bool = True


class ProviderOverride(BaseModel):
    """Per-provider overrides on top of the built-in definitions"""

    model_config = ConfigDict(extra="forbid")

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    verify_ssl: Optional[bool] = None
    chat_path: Optional[str] = None
    models_path: Optional[str] = None
    auth: Optional[AuthStrategy] = None
    auth_url: Optional[str] = None
    auth_scope: Optional[str] = None


class Config(BaseModel):
    """Main configuration"""

    serve: ServeConfig = ServeConfig()
    proxy: ProxySettings = ProxySettings()
    exchange_log: ExchangeLogConfig = ExchangeLogConfig()
    providers: Dict[ProviderId, ProviderOverride] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_oauth_providers(self) -> "Config":
        for provider in self.build_registry():
            if provider.needs_oauth and not provider.auth_url:
                raise ValueError(
                    f"Provider '{provider.id.value}' uses oauth_exchange but has no auth_url"
                )
        return self

    def build_registry(self) -> ProviderRegistry:
        """Merge overrides into the built-in providers and freeze the result."""
        merged: Dict[ProviderId, ProviderConfig] = {}
        for provider_id, base in default_providers().items():
            override = self.providers.get(provider_id)
            if override is None:
                merged[provider_id] = base
                continue
            updates = override.model_dump(exclude_none=True)
            merged[provider_id] = base.model_copy(update=updates)
        return ProviderRegistry(merged)


def substitute_env_vars(value: Any) -> Any:
    """Recursively substitute environment variables in configuration values

    Supports ${VAR_NAME} syntax for environment variable substitution
    """
    if isinstance(value, str):
        # Find all ${VAR_NAME} patterns
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)

        for var_name in matches:
            env_value = os.getenv(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)

        return value
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    else:
        return value


def _apply_environment_defaults(config_data: Dict[str, Any]) -> Dict[str, Any]:
    """Fill provider secrets and the port from the process environment.

    Values set explicitly in the YAML file win over the environment.
    """
    config_data = dict(config_data)
    providers = dict(config_data.get("providers") or {})
    for provider_name, env_var in SECRET_ENV_VARS.items():
        entry = dict(providers.get(provider_name) or {})
        if not entry.get("api_key"):
            env_value = os.getenv(env_var)
            if env_value:
                entry["api_key"] = env_value
        if entry:
            providers[provider_name] = entry
    config_data["providers"] = providers

    serve = dict(config_data.get("serve") or {})
    if "port" not in serve and os.getenv("PORT"):
        serve["port"] = os.getenv("PORT")
    config_data["serve"] = serve
    return config_data


def _load_env_file(env_file: Optional[str]) -> None:
    if env_file:
        env_path = os.path.expanduser(env_file)
        if not os.path.exists(env_path):
            raise FileNotFoundError(f"Environment file not found: {env_file}")
        load_dotenv(dotenv_path=env_path)
        return

    # Prefer searching from current working directory for uvx/local runs.
    cwd_env_file = find_dotenv(usecwd=True)
    if cwd_env_file:
        load_dotenv(dotenv_path=cwd_env_file)
    else:
        load_dotenv()


def load_config(
    config_path: Optional[str] = None, env_file: Optional[str] = None
) -> Config:
    """Load and validate configuration

    Args:
        config_path: Path to YAML configuration file. When omitted,
            ``config.yaml`` is used if present, otherwise built-in defaults.
        env_file: Optional path to dotenv file

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If an explicitly given config or env file doesn't exist
        ValueError: If configuration is invalid
    """
    _load_env_file(env_file)

    raw_config: Any = {}
    if config_path is not None:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f) or {}
    elif os.path.exists(DEFAULT_CONFIG_PATH):
        with open(DEFAULT_CONFIG_PATH, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f) or {}

    if not isinstance(raw_config, dict):
        raise ValueError("Invalid configuration: top level must be a mapping")

    config_data = _apply_environment_defaults(substitute_env_vars(raw_config))

    try:
        config = Config(**config_data)
    except Exception as e:
        raise ValueError(f"Invalid configuration: {e}")

    for provider in config.build_registry():
        if not provider.has_secret:
            logger.warning(
                "[config] no secret configured for %s (%s); requests to it will fail",
                provider.id.value,
                SECRET_ENV_VARS.get(provider.id.value, "api_key"),
            )
        elif provider.needs_oauth:
            try:
                encode_basic_secret(provider.api_key, provider.id.value)
            except MisconfiguredSecretError as e:
                logger.warning("[config] %s: %s", e.kind.value, e.message)
    return config
