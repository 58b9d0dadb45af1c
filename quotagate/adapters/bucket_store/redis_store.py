"""Redis-backed bucket store shared by every service instance.

The whole consume operation runs server-side as one Lua script, so Redis is
the single serialization point for each bucket key: no client-side locks, no
compare-and-swap loop, and no GET followed by a separate DECR.
"""

from __future__ import annotations

from typing import Any

import redis
from redis.exceptions import RedisError

from quotagate.adapters.bucket_store.base import AbstractBucketStore, ConsumeResult
from quotagate.core.errors import StoreUnavailableError


# KEYS[1] = bucket key, ARGV[1] = limit, ARGV[2] = ttl seconds
# Returns {consumed (0|1), remaining, ttl_remaining}
CONSUME_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local ttl = tonumber(ARGV[2])

    local current = redis.call('GET', key)
    if not current then
        -- Absent: the creating request takes the first token
        redis.call('SET', key, limit - 1, 'EX', ttl)
        return {1, limit - 1, ttl}
    end

    local ttl_left = redis.call('TTL', key)
    if ttl_left < 0 then
        -- Record without expiry would never reset; restore it
        redis.call('EXPIRE', key, ttl)
        ttl_left = ttl
    end

    local remaining = tonumber(current)
    if remaining > 0 then
        remaining = redis.call('DECR', key)
        return {1, remaining, ttl_left}
    end

    -- Exhausted: floor at zero, do not decrement
    return {0, 0, ttl_left}
"""


class RedisBucketStore(AbstractBucketStore):
    """Token buckets stored as Redis integers with native key expiry."""

    backend_name = "redis"

    def __init__(self, client: Any) -> None:
        """Initialize the store.

        Args:
            client: A ``redis.Redis`` client (or compatible object). Timeouts
                must be configured on the client; a timed-out call surfaces as
                ``StoreUnavailableError``.
        """
        self._client = client
        self._consume_script = client.register_script(CONSUME_SCRIPT)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout: float,
        connect_timeout: float,
        max_connections: int,
    ) -> "RedisBucketStore":
        """Build a store with a pooled client bounded by short timeouts."""
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=connect_timeout,
            max_connections=max_connections,
            retry_on_timeout=False,
        )
        return cls(client)

    def consume(self, key: str, *, limit: int, ttl_seconds: int) -> ConsumeResult:
        if not key:
            raise ValueError("key must be a non-empty string")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")

        try:
            reply = self._consume_script(keys=[key], args=[limit, ttl_seconds])
        except RedisError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Bucket store did not complete the consume operation",
                details={"backend": self.backend_name, "error_type": type(exc).__name__},
            ) from exc

        return self._parse_reply(reply)

    def _parse_reply(self, reply: Any) -> ConsumeResult:
        try:
            consumed, remaining, ttl_remaining = (int(v) for v in reply)
        except (TypeError, ValueError) as exc:
            raise StoreUnavailableError(
                code="store_bad_reply",
                message="Bucket store returned an unexpected reply",
                details={"backend": self.backend_name, "error_type": type(exc).__name__},
            ) from exc

        return ConsumeResult(
            consumed=consumed == 1,
            remaining=max(0, remaining),
            ttl_remaining=max(1, ttl_remaining),
        )

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError as exc:
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Bucket store is not reachable",
                details={"backend": self.backend_name, "error_type": type(exc).__name__},
            ) from exc
