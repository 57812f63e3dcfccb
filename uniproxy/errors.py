"""Proxy error taxonomy.

Every failure the proxy produces itself is a ``ProxyError``. Route handlers
never build error responses by hand; the app-level exception handler turns
``ProxyError.to_payload()`` into JSON with ``ProxyError.http_status``.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    CREDENTIAL_EXCHANGE_FAILED = "CredentialExchangeFailed"
    UPSTREAM_UNREACHABLE = "UpstreamUnreachable"
    UPSTREAM_REJECTED = "UpstreamRejected"
    MISCONFIGURED_SECRET = "MisconfiguredSecret"


_HTTP_STATUS = {
    ErrorKind.CREDENTIAL_EXCHANGE_FAILED: 502,
    ErrorKind.UPSTREAM_UNREACHABLE: 502,
    ErrorKind.UPSTREAM_REJECTED: 502,
    ErrorKind.MISCONFIGURED_SECRET: 500,
}


class ProxyError(Exception):
    """Base error carrying a kind, optional upstream status and payload."""

    kind: ErrorKind = ErrorKind.UPSTREAM_UNREACHABLE

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        upstream_status: Optional[int] = None,
        details: Any = None,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.upstream_status = upstream_status
        self.details = details
        self.timed_out = timed_out

    @property
    def http_status(self) -> int:
        if self.timed_out:
            return 504
        return _HTTP_STATUS[self.kind]

    def to_payload(self) -> Dict[str, Any]:
        """Structured error body. Fields that are unset are omitted."""
        payload: Dict[str, Any] = {
            "error": self.kind.value,
            "message": self.message,
        }
        if self.provider is not None:
            payload["provider"] = self.provider
        if self.upstream_status is not None:
            payload["upstream_status"] = self.upstream_status
        if self.details is not None:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(kind={self.kind.value!r}, "
            f"provider={self.provider!r}, upstream_status={self.upstream_status!r})"
        )


class CredentialExchangeFailedError(ProxyError):
    """Token endpoint unreachable, or it rejected the configured secret."""

    kind = ErrorKind.CREDENTIAL_EXCHANGE_FAILED


class UpstreamUnreachableError(ProxyError):
    """No response from the provider: DNS, TLS, connection reset, timeout."""

    kind = ErrorKind.UPSTREAM_UNREACHABLE


class MisconfiguredSecretError(ProxyError):
    """Provider secret missing or in an unrecognised format."""

    kind = ErrorKind.MISCONFIGURED_SECRET
