"""CLI entry point for the uniproxy server."""

import argparse
import os

import uvicorn

from .config import load_config
from .server import create_app

_CONFIG_ENV_VAR = "UNIPROXY_CONFIG_PATH"
_ENV_FILE_ENV_VAR = "UNIPROXY_ENV_FILE"


def _app_factory():
    """Uvicorn factory for reload mode."""
    return create_app(
        os.getenv(_CONFIG_ENV_VAR) or None,
        env_file=os.getenv(_ENV_FILE_ENV_VAR) or None,
    )


def main():
    """Main entry point for the uniproxy CLI."""
    parser = argparse.ArgumentParser(
        description="uniproxy - OpenRouter / DeepSeek / GigaChat reverse proxy"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to configuration file (default: config.yaml if present, else built-in defaults)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (overrides config)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (overrides config and PORT)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload on Python file changes (dev only)",
    )
    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        help="Path to environment file (default: auto-load .env if available)",
    )

    args = parser.parse_args()

    # Load config to get server settings
    config = load_config(args.config, env_file=args.env_file)

    host = args.host or config.serve.host
    port = args.port or config.serve.port
    registry = config.build_registry()

    print(f"Starting uniproxy on {host}:{port}")
    print(f"Default provider: {config.proxy.default_provider.value}")
    for provider in registry:
        status = "key set" if provider.has_secret else "key MISSING"
        print(f"  - {provider.display_name or provider.id.value}: {provider.base_url} ({status})")
    if args.env_file:
        print(f"Environment file: {args.env_file}")
    print("\nEndpoints:")
    print(f"  - Health: http://{host}:{port}/health")
    print(f"  - Smart proxy: http://{host}:{port}/proxy/<path>")
    for provider in registry:
        print(
            f"  - {provider.id.value}: http://{host}:{port}/{provider.id.value}/chat, "
            f"/{provider.id.value}/models"
        )
    for provider in registry.oauth_providers():
        print(f"  - Token check: http://{host}:{port}/debug/credentials/{provider.id.value}")

    if args.reload:
        if args.config:
            os.environ[_CONFIG_ENV_VAR] = args.config
        else:
            os.environ.pop(_CONFIG_ENV_VAR, None)
        if args.env_file:
            os.environ[_ENV_FILE_ENV_VAR] = args.env_file
        else:
            os.environ.pop(_ENV_FILE_ENV_VAR, None)
        print("\nAuto-reload: enabled")
        uvicorn.run(
            "uniproxy.cli:_app_factory",
            host=host,
            port=port,
            reload=True,
            factory=True,
        )
    else:
        # Reuse the already-loaded config to avoid parsing YAML/dotenv twice.
        app = create_app(args.config, env_file=args.env_file, preloaded_config=config)
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
