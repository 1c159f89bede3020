"""Startup-time helpers for safe config logging."""

import os

from cliq.common.config import QueueConfig
from cliq.common.logging import logger


_SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN", "DSN")


def _safe_env(name: str) -> str:
    """Return env value, redacted when the variable name looks secret."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if any(marker in name for marker in _SECRET_MARKERS):
        return "<redacted>"
    return value


def log_startup_config(service_name: str, instance_id: str, queue_config: QueueConfig, keys: list[str]) -> None:
    """Log the effective worker tuning plus selected raw env keys."""

    config = {"service": service_name, "instance_id": instance_id, **queue_config.model_dump()}
    for key in keys:
        config[key] = _safe_env(key)
    logger.info("startup_config=%s", config)
