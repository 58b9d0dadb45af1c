"""Factory for creating bucket store instances."""

from quotagate.adapters.bucket_store.base import AbstractBucketStore
from quotagate.adapters.bucket_store.in_memory import InMemoryBucketStore
from quotagate.adapters.bucket_store.redis_store import RedisBucketStore
from quotagate.core.config import settings
from quotagate.core.errors import ConfigurationAppError

SUPPORTED_BACKENDS = ("memory", "redis")


def create_bucket_store() -> AbstractBucketStore:
    """Instantiate the bucket store selected by configuration.

    Reads ``settings.store.backend`` and, for Redis, ``settings.redis``.
    Creating the Redis store does not open a connection; the first consume
    (or ping) does.

    Returns:
        AbstractBucketStore: Configured store instance.

    Raises:
        ConfigurationAppError: If the backend name is not supported.
    """
    backend = settings.store.backend.strip().lower()

    if backend == "memory":
        return InMemoryBucketStore()

    if backend == "redis":
        return RedisBucketStore.from_url(
            settings.redis.url,
            socket_timeout=settings.redis.socket_timeout_seconds,
            connect_timeout=settings.redis.connect_timeout_seconds,
            max_connections=settings.redis.max_connections,
        )

    raise ConfigurationAppError(
        code="store_unknown_backend",
        message=(
            f"Unknown bucket store backend: '{backend}'. "
            f"Supported backends: {', '.join(SUPPORTED_BACKENDS)}"
        ),
    )
