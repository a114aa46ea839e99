"""API routes for the proxy."""

from .chat import CHAT_PATHS, chat_completions, chat_usage_hint
from .health import health, root, whoami
from .models import list_models, upstream_models

__all__ = [
    "CHAT_PATHS",
    "chat_completions",
    "chat_usage_hint",
    "health",
    "list_models",
    "root",
    "upstream_models",
    "whoami",
]
