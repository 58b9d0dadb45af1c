"""In-memory bucket store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis store whenever more than one process serves traffic.
- Thread-safe: a single lock makes each consume call indivisible.
- Expired records are treated as absent and pruned lazily.
"""

from __future__ import annotations

import math
import threading
import time
from typing import Callable

from quotagate.adapters.bucket_store.base import (
    AbstractBucketStore,
    BucketRecord,
    ConsumeResult,
)

_PRUNE_EVERY = 1024


class InMemoryBucketStore(AbstractBucketStore):
    """Token buckets held in a dict guarded by a lock.

    Important:
        This store is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker enforces its
        own independent limits.
    """

    backend_name = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the in-memory store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, BucketRecord] = {}
        self._ops_since_prune = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _get_live(self, key: str, now: float) -> BucketRecord | None:
        """Return the record for key, or None if absent or expired."""
        record = self._records.get(key)
        if record is None:
            return None
        if record.expires_at <= now:
            del self._records[key]
            return None
        return record

    def _prune_expired(self, now: float) -> None:
        expired = [k for k, r in self._records.items() if r.expires_at <= now]
        for key in expired:
            del self._records[key]

    def consume(self, key: str, *, limit: int, ttl_seconds: int) -> ConsumeResult:
        """Atomically take one token from the bucket for ``key``.

        Raises:
            ValueError: If key is empty or limit/ttl_seconds are invalid.
        """
        if not key:
            raise ValueError("key must be a non-empty string")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")

        with self._lock:
            now = self._clock()

            self._ops_since_prune += 1
            if self._ops_since_prune >= _PRUNE_EVERY:
                self._prune_expired(now)
                self._ops_since_prune = 0

            record = self._get_live(key, now)
            if record is None:
                self._records[key] = BucketRecord(
                    remaining=limit - 1,
                    expires_at=now + ttl_seconds,
                )
                return ConsumeResult(
                    consumed=True,
                    remaining=limit - 1,
                    ttl_remaining=ttl_seconds,
                )

            ttl_remaining = max(1, int(math.ceil(record.expires_at - now)))

            if record.remaining > 0:
                remaining = record.remaining - 1
                self._records[key] = BucketRecord(
                    remaining=remaining,
                    expires_at=record.expires_at,
                )
                return ConsumeResult(
                    consumed=True,
                    remaining=remaining,
                    ttl_remaining=ttl_remaining,
                )

            return ConsumeResult(consumed=False, remaining=0, ttl_remaining=ttl_remaining)

    def ping(self) -> bool:
        return True
