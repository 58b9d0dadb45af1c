"""Bucket store interfaces.

The admission engine depends on this abstraction (not on a concrete backend)
so the in-process store used for single-instance deployments and tests can be
swapped for the shared Redis store without touching the decision logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class BucketRecord:
    """Counter state for one bucket key as held by a store.

    Attributes:
        remaining: Tokens left in the window, always in ``[0, limit]``.
        expires_at: UNIX epoch seconds at which the store drops the record.
    """

    remaining: int
    expires_at: float


@dataclass(frozen=True)
class ConsumeResult:
    """Outcome of a single atomic consume call.

    Attributes:
        consumed: Whether this call removed a token. False means the bucket
            was already empty before the call.
        remaining: Tokens left after this call, in ``[0, limit - 1]``.
        ttl_remaining: Whole seconds until the record expires.
    """

    consumed: bool
    remaining: int
    ttl_remaining: int


class AbstractBucketStore(ABC):
    """Interface for shared token-bucket stores.

    Implementations must execute ``consume`` as one indivisible operation for
    every concurrent caller, across threads and across processes sharing the
    backend. A read followed by a separate write is not acceptable.
    """

    backend_name: str = "abstract"

    @abstractmethod
    def consume(self, key: str, *, limit: int, ttl_seconds: int) -> ConsumeResult:
        """Atomically take one token from the bucket addressed by ``key``.

        - No record: create it at ``limit - 1`` expiring after ``ttl_seconds``.
        - Record with ``v > 0``: decrement to ``v - 1``.
        - Record at ``0``: leave it untouched.

        Args:
            key: Bucket key for the identity and window.
            limit: Tokens per window.
            ttl_seconds: Expiry applied when the record is created.

        Returns:
            ConsumeResult describing whether a token was removed.

        Raises:
            StoreUnavailableError: If the operation could not complete.
        """
        raise NotImplementedError

    @abstractmethod
    def ping(self) -> bool:
        """Check that the store is reachable.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError
