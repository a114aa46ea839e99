"""Core module initialization."""

from .backend import UpstreamClient, UpstreamResult, format_httpx_error
from .exceptions import (
    ConfigurationError,
    InvalidRequestError,
    ModelsExhaustedError,
    ProxyError,
    UpstreamClientError,
    UpstreamServerError,
)
from .handler import ChatProxy
from .normalizer import normalize_completion
from .router import FallbackRouter
from .sse import SSELineBuffer, StreamNormalizer, iter_normalized_stream
from .state import ModelState, build_model_state
from .truncation import DEFAULT_TIERS, TruncationTier, select_tier, truncate_messages

__all__ = [
    "ChatProxy",
    "ConfigurationError",
    "DEFAULT_TIERS",
    "FallbackRouter",
    "InvalidRequestError",
    "ModelState",
    "ModelsExhaustedError",
    "ProxyError",
    "SSELineBuffer",
    "StreamNormalizer",
    "TruncationTier",
    "UpstreamClient",
    "UpstreamClientError",
    "UpstreamResult",
    "UpstreamServerError",
    "build_model_state",
    "format_httpx_error",
    "iter_normalized_stream",
    "normalize_completion",
    "select_tier",
    "truncate_messages",
]
