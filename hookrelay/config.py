"""Application configuration settings.

This module provides centralized configuration management using environment
variables with sensible defaults. All variables are read with the
``HOOKRELAY_`` prefix.
"""

import os
from dataclasses import dataclass

ENV_PREFIX = "HOOKRELAY_"


def _get_env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _get_int_env(name: str, default: int) -> int:
    """Get an integer value from environment variable.

    Args:
        name: Variable name without the prefix.
        default: Default value if not set or not parseable.

    Returns:
        Integer value from environment.
    """
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """Get a float value from environment variable.

    Args:
        name: Variable name without the prefix.
        default: Default value if not set or not parseable.

    Returns:
        Float value from environment.
    """
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class Settings:
    """Webhook engine settings loaded from environment variables.

    Attributes:
        DELIVERY_TIMEOUT_SECONDS: Default outbound HTTP timeout.
        WORKER_COUNT: Number of delivery workers in the pool.
        POLL_INTERVAL_SECONDS: How long an idle worker waits before re-polling.
        MAX_RETRIES: Default retry budget for new endpoints.
        INITIAL_BACKOFF_MS: Delay before the first retry.
        BACKOFF_MULTIPLIER: Growth factor between retries.
        MAX_BACKOFF_MS: Upper bound for any single retry delay.
        MAX_PAYLOAD_BYTES: Largest serialized event payload accepted by emit.
        USER_AGENT: User-Agent header sent with every delivery.
        INACTIVE_RECHECK_SECONDS: Delay applied to jobs of inactive endpoints.
        LEASE_SECONDS: Age after which an in-flight job is considered abandoned.
        NOTIFY_QUEUE_SIZE: Capacity of the dispatcher-to-worker channel.
        DB_PATH: SQLite database path for the durable store.
        LOG_LEVEL: Logging level.
        LOG_FORMAT: "json" or "text".
    """

    # Delivery
    DELIVERY_TIMEOUT_SECONDS: float = 30.0
    WORKER_COUNT: int = 4
    POLL_INTERVAL_SECONDS: float = 1.0
    USER_AGENT: str = "HookRelay-Webhooks/1.0"
    MAX_PAYLOAD_BYTES: int = 1024 * 1024

    # Retry policy defaults
    MAX_RETRIES: int = 3
    INITIAL_BACKOFF_MS: int = 1000
    BACKOFF_MULTIPLIER: float = 2.0
    MAX_BACKOFF_MS: int = 300_000  # 5 minutes

    # Queue
    INACTIVE_RECHECK_SECONDS: float = 60.0
    LEASE_SECONDS: float = 360.0  # longer than the largest endpoint timeout
    NOTIFY_QUEUE_SIZE: int = 1000

    # Storage
    DB_PATH: str = "data/webhooks.db"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables.

        Returns:
            Settings instance populated from environment.
        """
        return cls(
            DELIVERY_TIMEOUT_SECONDS=_get_float_env("DELIVERY_TIMEOUT_SECONDS", 30.0),
            WORKER_COUNT=_get_int_env("WORKER_COUNT", 4),
            POLL_INTERVAL_SECONDS=_get_float_env("POLL_INTERVAL_SECONDS", 1.0),
            USER_AGENT=_get_env("USER_AGENT", "HookRelay-Webhooks/1.0"),
            MAX_PAYLOAD_BYTES=_get_int_env("MAX_PAYLOAD_BYTES", 1024 * 1024),
            MAX_RETRIES=_get_int_env("MAX_RETRIES", 3),
            INITIAL_BACKOFF_MS=_get_int_env("INITIAL_BACKOFF_MS", 1000),
            BACKOFF_MULTIPLIER=_get_float_env("BACKOFF_MULTIPLIER", 2.0),
            MAX_BACKOFF_MS=_get_int_env("MAX_BACKOFF_MS", 300_000),
            INACTIVE_RECHECK_SECONDS=_get_float_env("INACTIVE_RECHECK_SECONDS", 60.0),
            LEASE_SECONDS=_get_float_env("LEASE_SECONDS", 360.0),
            NOTIFY_QUEUE_SIZE=_get_int_env("NOTIFY_QUEUE_SIZE", 1000),
            DB_PATH=_get_env("DB_PATH", "data/webhooks.db"),
            LOG_LEVEL=_get_env("LOG_LEVEL", "INFO"),
            LOG_FORMAT=_get_env("LOG_FORMAT", "json"),
        )
