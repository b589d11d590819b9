"""Startup-time helpers for safe config logging."""

from notifier.common.config import CommonSettings
from notifier.common.logging import logger


SECRET_MARKERS = ("key", "secret", "password", "token", "dsn")


def _redact(name: str, value):
    """Return `value` unless `name` looks like it holds a credential."""

    if value is None:
        return "<unset>"
    if any(marker in name.lower() for marker in SECRET_MARKERS):
        return "<redacted>"
    return value


def safe_config(config: CommonSettings, keys: list[str]) -> dict:
    """Pick `keys` from settings, redacting secrets and provider credentials."""

    snapshot = {"service": config.service_name}
    for key in keys:
        snapshot[key] = _redact(key, getattr(config, key, None))
    snapshot["providers"] = {
        channel: {
            "name": provider.name,
            "enabled": provider.enabled,
            "url": _redact("url", provider.url),
            "api_key": _redact("api_key", provider.api_key),
            "timeout_seconds": provider.timeout_seconds,
        }
        for channel, provider in config.providers.items()
    }
    return snapshot


def log_startup_config(config: CommonSettings, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    logger.info("startup_config=%s", safe_config(config, keys))
