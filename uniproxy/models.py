"""Pydantic models for the proxy's own responses"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Structured error body for failures produced by the proxy"""

    error: str
    message: str
    provider: Optional[str] = None
    upstream_status: Optional[int] = None
    details: Any = None


class ProviderStatus(BaseModel):
    """Per-provider entry in the health report"""

    id: str
    name: str
    description: str
    base_url: str
    auth: str
    key_configured: bool
    credential_state: Optional[str] = None  # OAuth providers only


class HealthResponse(BaseModel):
    """Health check response"""

    status: str = "OK"
    message: str = "Universal AI Proxy is running"
    default_provider: str
    usage: Dict[str, Any]
    environment: Dict[str, str]
    providers: List[ProviderStatus]
    supported_providers: List[str]


class CredentialDiagnostics(BaseModel):
    """Token health without the token itself"""

    provider: str
    state: str
    secret_format: str
    token_preview: Optional[str] = None
    token_length: int
    expires_in_seconds: Optional[int] = None
    exchange_count: int
