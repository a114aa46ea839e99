"""Core exceptions for the proxy."""

from typing import Any, Optional


class ProxyError(Exception):
    """Base exception for proxy errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ProxyError):
    """Raised when there's an issue with the configuration."""
    pass


class InvalidRequestError(ProxyError):
    """Raised when an incoming request is invalid."""

    def __init__(self, message: str, code: str = "invalid_request") -> None:
        super().__init__(message)
        self.code = code


class UpstreamError(ProxyError):
    """An upstream attempt finished with a non-success HTTP status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        body: Any = None,
        model: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.model = model


class UpstreamClientError(UpstreamError):
    """Upstream answered with a status below 500 other than 200."""

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class UpstreamServerError(UpstreamError):
    """Upstream answered with a 5xx status."""
    pass


class ModelsExhaustedError(ProxyError):
    """No model is left to try for this request."""
    pass
