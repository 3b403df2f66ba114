"""Load relay settings from config/settings.yaml plus RELAY_* environment overrides."""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

logger = logging.getLogger(__name__)

_DEFAULTS: dict[str, Any] = {
    "ingress": {
        "host": "127.0.0.1",
        "port": 8080,
        "source": "myapp",
        "detail_type": "order",
        # Demo defaults applied when the body omits them.
        "defaults": {"orderId": "12345", "amount": 100},
    },
    "queue": {
        "db_path": "data/queue.db",
        "name": "EventBridgeQueue",
        "visibility_timeout": 300,
        "max_receive_count": 3,
        "busy_timeout": 5000,
        "poll_interval": 0.5,
    },
    "routing": {
        "rules": [
            {
                "name": "orders",
                "sources": ["myapp"],
                "types": ["order"],
                "targets": ["${queue.name}"],
            },
        ],
    },
    "consumer": {
        "workers": 1,
        "batch_size": 10,
        "wait_time": 1.0,
        "handler_timeout": 60,
    },
    "logging": {
        "file": "logs/relay.log",
        "level": "INFO",
        "log_to_console": True,
        "max_bytes": 10485760,  # 10 MB
        "backup_count": 3,
    },
}

# env var -> (dot path, converter)
_ENV_OVERRIDES: dict[str, tuple[str, Callable[[str], Any]]] = {
    "RELAY_QUEUE_DB": ("queue.db_path", str),
    "RELAY_QUEUE_NAME": ("queue.name", str),
    "RELAY_VISIBILITY_TIMEOUT": ("queue.visibility_timeout", float),
    "RELAY_MAX_RECEIVE_COUNT": ("queue.max_receive_count", int),
    "RELAY_INGRESS_HOST": ("ingress.host", str),
    "RELAY_INGRESS_PORT": ("ingress.port", int),
    "RELAY_WORKERS": ("consumer.workers", int),
    "RELAY_LOG_LEVEL": ("logging.level", str),
}

_cached: dict[str, Any] | None = None


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base recursively. Mutates base."""
    for key, value in overlay.items():
        if value is None:
            continue
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def get_default_settings() -> dict[str, Any]:
    """Return a deep copy of default settings."""
    return _deep_copy_nested(_DEFAULTS)


def get_setting(settings: dict[str, Any], path: str, default: Any = None) -> Any:
    """Get a nested value by dot path (e.g. 'queue.visibility_timeout')."""
    current: Any = settings
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _set_setting(settings: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = settings
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def apply_env_overrides(
    settings: dict[str, Any], environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Apply RELAY_* variables on top of settings. Mutates and returns settings."""
    env = os.environ if environ is None else environ
    for name, (path, convert) in _ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            _set_setting(settings, path, convert(raw))
        except ValueError as e:
            raise ValueError(f"{name}={raw!r} is not a valid {convert.__name__}") from e
    return settings


def reload_settings() -> None:
    """Clear the settings cache."""
    global _cached
    _cached = None


def load_settings(
    config_dir: Path | None = None, environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Load settings from config/settings.yaml. Returns defaults + file values + env overrides."""
    global _cached
    if _cached is not None:
        return _cached

    if config_dir is None:
        config_dir = Path(__file__).resolve().parent.parent / "config"
    path = config_dir / "settings.yaml"

    result = get_default_settings()

    if path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                _deep_merge(result, data)
        except (yaml.YAMLError, OSError) as e:
            logger.warning("Ignoring unreadable %s, using defaults: %s", path, e)

    apply_env_overrides(result, environ)
    _cached = result
    return result


def _deep_copy_nested(obj: Any) -> Any:
    """Return a deep copy of nested dicts/lists for defaults."""
    if isinstance(obj, dict):
        return {k: _deep_copy_nested(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_deep_copy_nested(x) for x in obj]
    return obj
