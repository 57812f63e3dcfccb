"""FastAPI server exposing the pass-through and direct provider routes"""

import logging
import secrets
from contextlib import asynccontextmanager
from typing import Dict, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Config, load_config
from .constants import SECRET_ENV_VARS
from .credentials import CredentialManager
from .errors import ProxyError
from .exchange_logger import configure_exchange_log, log_exchange
from .gateway import ForwardingGateway
from .models import CredentialDiagnostics, ErrorResponse, HealthResponse, ProviderStatus
from .pipeline import RequestContext, authorize, forward_request, resolve_provider
from .providers import ProviderId, ProviderRegistry
from .redaction import sanitize_error_message

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

PASS_THROUGH_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def _configure_logging(debug: bool) -> None:
    """Apply runtime log level from config."""
    level = logging.DEBUG if debug else logging.INFO
    logging.getLogger("uniproxy").setLevel(level)


def _build_credential_managers(
    config: Config, registry: ProviderRegistry, gateway: ForwardingGateway
) -> Dict[ProviderId, CredentialManager]:
    return {
        provider.id: CredentialManager(
            provider,
            gateway.client_for,
            ttl_seconds=config.proxy.token_ttl_seconds,
            timeout=config.proxy.auth_timeout,
        )
        for provider in registry.oauth_providers()
    }


def _build_health_response(
    config: Config,
    registry: ProviderRegistry,
    credential_managers: Dict[ProviderId, CredentialManager],
) -> HealthResponse:
    """Status report. Reports whether keys are set, never their values."""
    providers = []
    environment = {}
    for provider in registry:
        manager = credential_managers.get(provider.id)
        providers.append(
            ProviderStatus(
                id=provider.id.value,
                name=provider.display_name or provider.id.value,
                description=provider.description,
                base_url=provider.base_url,
                auth=provider.auth.value,
                key_configured=provider.has_secret,
                credential_state=manager.state.value if manager else None,
            )
        )
        env_var = SECRET_ENV_VARS.get(provider.id.value, provider.id.value)
        environment[env_var.lower()] = "Set" if provider.has_secret else "Missing"

    direct = {
        provider.id.value: f"/{provider.id.value}/chat, /{provider.id.value}/models"
        for provider in registry
    }
    return HealthResponse(
        default_provider=config.proxy.default_provider.value,
        usage={
            "smart_proxy": "Use /proxy/* for automatic routing",
            "openrouter": "Auto-detected for: gpt-*, claude-*, llama-*",
            "deepseek": "Auto-detected for: deepseek-*",
            "gigachat": "Auto-detected for: gigachat-*, gpt-4*",
            "direct_endpoints": direct,
        },
        environment=environment,
        providers=providers,
        supported_providers=[p.description or p.id.value for p in registry],
    )


def create_app(
    config_path: Optional[str] = None,
    env_file: Optional[str] = None,
    preloaded_config: Optional[Config] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create and configure FastAPI application

    Args:
        config_path: Path to configuration file
        env_file: Optional path to dotenv file
        preloaded_config: Preloaded config object to avoid re-parsing config
        transport: Optional httpx transport for all upstream calls (tests)

    Returns:
        Configured FastAPI app
    """
    if preloaded_config is not None:
        config = preloaded_config
        _configure_logging(config.serve.debug)
        logger.info("Using preloaded configuration")
    else:
        try:
            config = load_config(config_path, env_file=env_file)
            _configure_logging(config.serve.debug)
            logger.info(f"Loaded configuration from {config_path or 'defaults'}")
        except Exception as e:
            logger.exception(f"Failed to load configuration: {e}")
            raise

    registry = config.build_registry()
    gateway = ForwardingGateway(timeout=config.proxy.request_timeout, transport=transport)
    credential_managers = _build_credential_managers(config, registry, gateway)
    configure_exchange_log(
        config.exchange_log.directory, config.exchange_log.log_message_content
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        logger.info(
            "Providers: %s (default: %s)",
            ", ".join(p.value for p in registry.ids),
            config.proxy.default_provider.value,
        )
        yield
        await gateway.aclose()

    app = FastAPI(
        title="uniproxy",
        description="Reverse proxy routing chat completions to OpenRouter, DeepSeek and GigaChat",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.registry = registry
    app.state.gateway = gateway
    app.state.credential_managers = credential_managers

    bearer_scheme = HTTPBearer(auto_error=False)

    async def verify_api_key(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ) -> None:
        """Check the inbound bearer key when serve.api_key is configured."""
        expected = config.serve.api_key
        if expected is None:
            return
        if credentials is None or not secrets.compare_digest(
            credentials.credentials.encode("utf-8"), expected.encode("utf-8")
        ):
            raise HTTPException(
                status_code=401,
                detail="Invalid API Key",
                headers={"WWW-Authenticate": "Bearer"},
            )

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(_request: Request, exc: ProxyError):
        body = ErrorResponse(**exc.to_payload())
        return JSONResponse(
            status_code=exc.http_status, content=body.model_dump(exclude_none=True)
        )

    async def _log_context(
        ctx: RequestContext,
        status_code: Optional[int],
        response_data=None,
        error=None,
    ) -> None:
        await log_exchange(
            ctx.provider_id.value if ctx.provider_id else "proxy",
            ctx.request_id,
            ctx.method,
            ctx.path,
            ctx.body,
            response_data,
            status_code,
            ctx.latency_ms,
            error=error,
            request_headers=ctx.caller_headers,
        )

    async def _run(ctx: RequestContext) -> Response:
        try:
            resolve_provider(ctx, config, registry)
            await authorize(ctx, credential_managers)
            await forward_request(ctx, gateway)
        except ProxyError as e:
            logger.error(
                "[proxy] %s %s failed: %s (%s)",
                ctx.method,
                ctx.path,
                e.kind.value,
                e.message,
            )
            await _log_context(ctx, e.http_status, error=e.to_payload())
            raise
        except Exception as e:
            message = sanitize_error_message(e)
            logger.error(f"Error processing request: {message}", exc_info=True)
            await _log_context(ctx, 500, error={"error": "InternalError", "message": message})
            body = ErrorResponse(error="InternalError", message=message)
            return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))

        upstream = ctx.response
        await _log_context(ctx, upstream.status_code, response_data=upstream.content)
        response = Response(content=upstream.content, status_code=upstream.status_code)
        for key, value in upstream.headers:
            response.headers.append(key, value)
        return response

    @app.get("/", response_model=HealthResponse)
    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check with per-provider key and credential status"""
        return _build_health_response(config, registry, credential_managers)

    @app.api_route(
        "/proxy/{path:path}",
        methods=PASS_THROUGH_METHODS,
        dependencies=[Depends(verify_api_key)],
    )
    async def smart_proxy(path: str, request: Request):
        """Pass-through route; the provider is picked from the body's model field."""
        ctx = RequestContext(
            method=request.method,
            path=path,
            body=await request.body(),
            caller_headers=dict(request.headers),
            query_params=request.query_params.multi_items(),
        )
        return await _run(ctx)

    def _add_direct_routes(provider_id: ProviderId) -> None:
        provider = registry.get(provider_id)

        async def direct_chat(request: Request):
            ctx = RequestContext(
                method="POST",
                path=provider.chat_path,
                body=await request.body(),
                query_params=request.query_params.multi_items(),
                pinned_provider=provider_id,
            )
            return await _run(ctx)

        async def direct_models(request: Request):
            ctx = RequestContext(
                method="GET",
                path=provider.models_path,
                query_params=request.query_params.multi_items(),
                pinned_provider=provider_id,
            )
            return await _run(ctx)

        app.add_api_route(
            f"/{provider_id.value}/chat",
            direct_chat,
            methods=["POST"],
            dependencies=[Depends(verify_api_key)],
            name=f"{provider_id.value}_chat",
            summary=f"Direct {provider.display_name or provider_id.value} chat completions",
        )
        app.add_api_route(
            f"/{provider_id.value}/models",
            direct_models,
            methods=["GET"],
            dependencies=[Depends(verify_api_key)],
            name=f"{provider_id.value}_models",
            summary=f"{provider.display_name or provider_id.value} model list",
        )

    for provider_id in registry.ids:
        _add_direct_routes(provider_id)

    @app.get(
        "/debug/credentials/{provider_id}",
        response_model=CredentialDiagnostics,
        dependencies=[Depends(verify_api_key)],
    )
    async def credential_diagnostics(provider_id: str):
        """Check that a token can be obtained; shows only a preview and length."""
        try:
            manager = credential_managers.get(ProviderId(provider_id))
        except ValueError:
            manager = None
        if manager is None:
            raise HTTPException(
                status_code=404,
                detail=f"No OAuth credential manager for provider '{provider_id}'",
            )
        return CredentialDiagnostics(**await manager.diagnostics())

    return app
