"""ARQ (Async Redis Queue) configuration for the storefront worker."""

from urllib.parse import urlparse

from arq.connections import RedisSettings
from libs.common.config import Settings


def get_redis_settings(settings: Settings) -> RedisSettings:
    """Build ARQ RedisSettings from ``REDIS_URL`` (``redis://`` or ``rediss://``)."""
    parsed = urlparse(settings.REDIS_URL)
    if parsed.scheme not in ("redis", "rediss"):
        raise ValueError(f"Unsupported REDIS_URL scheme: {parsed.scheme!r}")

    database = parsed.path.lstrip("/")
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        database=int(database) if database else 0,
        username=parsed.username,
        password=parsed.password,
        ssl=parsed.scheme == "rediss",
        conn_timeout=5,
    )


def get_queue_name(settings: Settings) -> str:
    """Queue shared by the API (enqueueing) and the worker (consuming)."""
    return settings.ARQ_QUEUE_NAME
