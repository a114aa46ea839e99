"""Configuration loading from YAML files with environment variable support."""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import dotenv_values

from .core.backend import DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from .core.exceptions import ConfigurationError
from .core.router import CLIENT_ERROR_DELAY, SERVER_ERROR_DELAY
from .core.truncation import DEFAULT_TIERS, TruncationTier, parse_tiers

logger = logging.getLogger("nimbridge")

# Default path to the config file (relative to project root)
DEFAULT_CONFIG_PATH = "configs/config.yaml"
DEFAULT_MODEL = "deepseek-ai/deepseek-v3"
DEFAULT_MAX_BODY_BYTES = 20 * 1024 * 1024

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


@dataclass
class ProxySettings:
    """Everything the proxy reads once at startup."""

    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    primary_model: str = DEFAULT_MODEL
    fallback_models: tuple[str, ...] = ()
    enable_streaming: bool = True
    enable_smart_truncation: bool = True
    show_reasoning: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    request_timeout: float = DEFAULT_TIMEOUT
    client_error_delay: float = CLIENT_ERROR_DELAY
    server_error_delay: float = SERVER_ERROR_DELAY
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    truncation_tiers: tuple[TruncationTier, ...] = DEFAULT_TIERS


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _split_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    return [str(value)]


def resolve_config_path(path: str) -> Path:
    """Resolve config path relative to project root if needed."""
    if Path(path).is_absolute():
        return Path(path)
    project_root = Path(__file__).parent.parent
    return project_root / path


def load_env_values(env_path: Path) -> dict[str, str]:
    """Load environment values from a .env file without mutating os.environ."""
    if not env_path.exists():
        return {}
    raw_values = dotenv_values(env_path)
    return {key: value for key, value in raw_values.items() if value is not None}


def load_config(path: Optional[str] = None, substitute_env: bool = True) -> dict:
    """Load configuration from a YAML file.

    A missing file yields an empty config so that a bare environment is
    enough to run the proxy.
    """
    if path is None:
        path = os.getenv("NIMBRIDGE_CONFIG") or DEFAULT_CONFIG_PATH

    config_path = resolve_config_path(path)
    if not config_path.exists():
        logger.info("No config file at %s; using environment and defaults", config_path)
        return {}

    env_values: dict[str, str] = {}
    if substitute_env:
        env_file = config_path.with_name(".env")
        if env_file.exists():
            logger.info(f"Loading environment variables from {env_file}")
            env_values = load_env_values(env_file)

    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    if substitute_env:
        data = _substitute_env_vars(data, env_values)

    logger.info(f"Configuration loaded successfully from {config_path}")
    return data


def _substitute_env_vars(
    obj: Any, env_values: Optional[Mapping[str, str]] = None
) -> Any:
    """Recursively substitute ${VAR_NAME} and $VAR_NAME placeholders."""
    env_values = env_values or {}

    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env_values) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values) for item in obj]
    if isinstance(obj, str):
        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            value = env_values.get(var_name)
            if value is None:
                value = os.getenv(var_name)
            if value is None:
                logger.warning(
                    f"CONFIG ERROR: Environment variable '${var_name}' is not set! "
                    f"The literal placeholder will be used."
                )
                return match.group(0)
            return value

        return ENV_VAR_PATTERN.sub(replace_var, obj)
    return obj


def build_settings(
    config: Mapping[str, Any], environ: Optional[Mapping[str, str]] = None
) -> ProxySettings:
    """Merge a config mapping with environment overrides.

    Environment variables take priority over the config file.
    """
    env = os.environ if environ is None else environ
    upstream = config.get("upstream") or {}
    features = config.get("features") or {}
    server = config.get("server") or {}
    retry = config.get("retry") or {}
    defaults = ProxySettings()

    def pick(env_name: str, section: Mapping[str, Any], key: str, default: Any) -> Any:
        value = env.get(env_name)
        if value is not None and value != "":
            return value
        value = section.get(key)
        return default if value is None else value

    try:
        port = int(pick("PORT", server, "port", defaults.port))
    except (TypeError, ValueError):
        port = defaults.port

    try:
        timeout = float(upstream.get("request_timeout", defaults.request_timeout))
        client_delay = float(retry.get("client_error_delay", defaults.client_error_delay))
        server_delay = float(retry.get("server_error_delay", defaults.server_error_delay))
        max_body = int(server.get("max_body_bytes", defaults.max_body_bytes))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid numeric setting: {exc}") from exc

    tiers_cfg = (config.get("truncation") or {}).get("tiers")
    tiers = parse_tiers(tiers_cfg) if tiers_cfg else DEFAULT_TIERS

    cors_origins = _split_list(pick("CORS_ORIGINS", server, "cors_origins", None)) or ["*"]

    return ProxySettings(
        api_key=str(pick("NIM_API_KEY", upstream, "api_key", "")),
        base_url=str(pick("NIM_BASE_URL", upstream, "base_url", defaults.base_url)),
        primary_model=str(pick("NIM_MODEL", upstream, "model", defaults.primary_model)),
        fallback_models=tuple(_split_list(pick("NIM_FALLBACK_MODELS", upstream, "fallback_models", []))),
        enable_streaming=_parse_bool(pick("ENABLE_STREAMING", features, "streaming", True)),
        enable_smart_truncation=_parse_bool(
            pick("ENABLE_SMART_TRUNCATION", features, "smart_truncation", True)
        ),
        show_reasoning=_parse_bool(pick("SHOW_REASONING", features, "show_reasoning", False)),
        host=str(pick("NIMBRIDGE_HOST", server, "host", defaults.host)),
        port=port,
        request_timeout=timeout,
        client_error_delay=client_delay,
        server_error_delay=server_delay,
        max_body_bytes=max_body,
        cors_origins=cors_origins,
        truncation_tiers=tiers,
    )


def load_settings(path: Optional[str] = None) -> ProxySettings:
    return build_settings(load_config(path))
