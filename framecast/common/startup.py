"""Startup-time helpers for safe config logging."""

import os

from framecast.common.logging import logger


# RPC provider URLs usually embed an API key in the path.
_REDACTED_MARKERS = ["KEY", "SECRET", "PASSWORD", "TOKEN", "RPC_URL", "DSN"]


def _safe_env(name: str) -> str:
    """Return env value with redaction for secret-like variable names."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(marker in name for marker in _REDACTED_MARKERS):
        return "<redacted>" if value else "<empty>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log selected startup config keys for quick troubleshooting."""

    config = {"service": service_name}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)
