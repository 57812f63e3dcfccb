"""Shared constants for uniproxy."""

# Upstream endpoints (providers.py)
OPENROUTER_BASE_URL = "https://openrouter.ai/api"
DEEPSEEK_BASE_URL = "https://api.deepseek.com"
GIGACHAT_BASE_URL = "https://gigachat.devices.sberbank.ru/api/v1"
GIGACHAT_AUTH_URL = "https://ngw.devices.sberbank.ru:9443/api/v2/oauth"
GIGACHAT_SCOPE = "GIGACHAT_API_PERS"

# OpenRouter attribution headers
OPENROUTER_REFERER = "https://openai-proxy-gglw.onrender.com"
OPENROUTER_TITLE = "Corporate AI Proxy"

# Environment variables holding one secret per provider (config.py)
SECRET_ENV_VARS = {
    "openrouter": "OPENROUTER_KEY",
    "deepseek": "DEEPSEEK_KEY",
    "gigachat": "GIGACHAT_KEY",
}

# Timeouts (seconds). Auth calls are bounded independently of data calls.
REQUEST_TIMEOUT = 30.0
AUTH_TIMEOUT = 10.0

# Tokens are cached for less than GigaChat's 30 minute lifetime.
TOKEN_TTL_SECONDS = 25 * 60

# Diagnostics never show more than this many characters of a secret.
SECRET_PREVIEW_CHARS = 8

# Caller headers never forwarded upstream (gateway.py)
DROPPED_REQUEST_HEADERS = {
    "host",
    "content-length",
    "authorization",
    "x-api-key",
    "cookie",
    "connection",
    "keep-alive",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "accept-encoding",
}

# Upstream headers never relayed back to the caller (gateway.py)
UNSAFE_RESPONSE_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "content-encoding",
    "content-length",
}
