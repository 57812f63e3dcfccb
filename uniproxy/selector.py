"""Provider selection by model name"""

import json
from typing import Any, Optional

from .providers import ProviderId

# Checked in order, first match wins. "gpt-4" must stay ahead of "gpt":
# GPT-4-named models are served by GigaChat, other GPT names by OpenRouter.
_ROUTING_RULES = (
    (("deepseek",), ProviderId.DEEPSEEK),
    (("gigachat", "gpt-4"), ProviderId.GIGACHAT),
    (("gpt", "claude", "llama"), ProviderId.OPENROUTER),
)


def select_provider(
    model: Optional[str], default: ProviderId = ProviderId.OPENROUTER
) -> ProviderId:
    """Pick the upstream provider for a requested model name.

    Matching is a case-insensitive substring test. A missing model, or one
    matching no rule, goes to ``default``.
    """
    if not model or not isinstance(model, str):
        return default

    model_lower = model.lower()
    for needles, provider in _ROUTING_RULES:
        if any(needle in model_lower for needle in needles):
            return provider
    return default


def model_from_body(body: bytes) -> Optional[str]:
    """Extract the ``model`` field from an opaque request body, if any."""
    if not body:
        return None
    try:
        payload: Any = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    model = payload.get("model")
    return model if isinstance(model, str) else None
