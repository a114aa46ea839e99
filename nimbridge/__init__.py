"""nimbridge - OpenAI-compatible proxy for NVIDIA NIM style providers

Adds resilience on top of the raw upstream call:
- Tiered truncation of oversized conversation histories
- Fallback across an ordered model list with a sticky current model
- Response reshaping, including <think> fusion of streamed reasoning

Example:
    >>> from nimbridge.main import app
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=3000)
"""

from .config_loader import ProxySettings, build_settings, load_config, load_settings
from .core import ChatProxy, FallbackRouter, ModelState, UpstreamClient
from .logging import logger, setup_logging

__all__ = [
    "ChatProxy",
    "FallbackRouter",
    "ModelState",
    "ProxySettings",
    "UpstreamClient",
    "build_settings",
    "load_config",
    "load_settings",
    "logger",
    "setup_logging",
]
