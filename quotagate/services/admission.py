"""Admission decision engine.

Decides, for one request, whether an identity is within its per-window quota.
All shared state lives in the bucket store; the engine itself is stateless
between calls and needs no locks, so any number of engines (threads,
workers, hosts) can share one store.

Each evaluation is a complete transaction of at most one store round trip:

1. Exempt identities short-circuit to ``Bypass`` before the store is touched.
2. The bucket key for the current window is derived.
3. One atomic ``consume`` decides admission from whether a token was removed.
4. If the store is unavailable the request is admitted as ``AllowDegraded``.
   The store is never retried.

Admission is never inferred from ``remaining`` alone: the store floors at
zero, so "took the last token" and "bucket was already empty" both report
``remaining == 0``. Only ``ConsumeResult.consumed`` distinguishes them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Union

from quotagate.adapters.bucket_store.base import AbstractBucketStore
from quotagate.core.errors import ConfigurationAppError, StoreUnavailableError
from quotagate.core.logging import hash_identity
from quotagate.services.bypass import AbstractBypassPolicy
from quotagate.services.events import (
    EVENT_DEGRADED,
    EVENT_REJECTED,
    AbstractEventSink,
    AdmissionEvent,
)
from quotagate.services.key_scheme import (
    DEFAULT_KEY_PREFIX,
    build_bucket_key,
    seconds_until_reset,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaConfig:
    """Tokens allowed per identity per fixed window.

    Raises:
        ConfigurationAppError: If limit or window_seconds is not positive.
    """

    limit: int
    window_seconds: int

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ConfigurationAppError(
                code="invalid_quota_limit",
                message="Quota limit must be a positive integer",
                details={"hint": "Set APP_RATE_LIMIT_REQUESTS to a value >= 1"},
            )
        if self.window_seconds < 1:
            raise ConfigurationAppError(
                code="invalid_quota_window",
                message="Quota window must be a positive number of seconds",
                details={"hint": "Set APP_RATE_LIMIT_WINDOW_SECONDS to a value >= 1"},
            )


@dataclass(frozen=True)
class Bypass:
    """Identity is exempt; no store call was made."""


@dataclass(frozen=True)
class Allow:
    """Request admitted.

    Attributes:
        remaining: Tokens left in the window after this request.
        reset_after_seconds: Seconds until the window's record expires.
    """

    remaining: int
    reset_after_seconds: int


@dataclass(frozen=True)
class Reject:
    """Request denied; the bucket was already empty before this call."""

    retry_after_seconds: int


@dataclass(frozen=True)
class AllowDegraded:
    """Request admitted without enforcement because the store was unavailable."""

    reason: str


Decision = Union[Bypass, Allow, Reject, AllowDegraded]


def decision_kind(decision: Decision) -> str:
    """Short label for a decision, used in logs and API payloads."""
    if isinstance(decision, Bypass):
        return "bypass"
    if isinstance(decision, Allow):
        return "allow"
    if isinstance(decision, Reject):
        return "reject"
    return "allow_degraded"


class AdmissionDecisionEngine:
    """Evaluates quota admission for identities against a shared bucket store."""

    def __init__(
        self,
        *,
        store: AbstractBucketStore,
        bypass_policy: AbstractBypassPolicy,
        event_sink: AbstractEventSink,
        clock: Callable[[], float] = time.time,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Shared atomic bucket store.
            bypass_policy: Exemption lookup consulted before enforcement.
            event_sink: Receives one event per reject and per degraded admit.
            clock: Time source function returning UNIX time in seconds.
            key_prefix: Namespace prefix for bucket keys.
        """
        self._store = store
        self._bypass_policy = bypass_policy
        self._event_sink = event_sink
        self._clock = clock
        self._key_prefix = key_prefix

    @property
    def store(self) -> AbstractBucketStore:
        return self._store

    def now(self) -> float:
        """Current time on the clock decisions are made against."""
        return self._clock()

    def evaluate(self, identity: str, quota: QuotaConfig) -> Decision:
        """Decide admission for one request.

        Never raises for store failures: the return value is always a valid
        Decision.

        Args:
            identity: Non-empty caller identity.
            quota: Validated quota configuration.

        Returns:
            Bypass, Allow, Reject or AllowDegraded.
        """
        if self._bypass_policy.is_exempt(identity):
            return Bypass()

        now = self._clock()
        key = build_bucket_key(
            identity, now, quota.window_seconds, prefix=self._key_prefix
        )
        ttl_seconds = seconds_until_reset(now, quota.window_seconds)

        try:
            result = self._store.consume(key, limit=quota.limit, ttl_seconds=ttl_seconds)
        except StoreUnavailableError as exc:
            logger.warning(
                "rate_limit.store_unavailable",
                extra={
                    "identity_hash": hash_identity(identity),
                    "backend": self._store.backend_name,
                    "error_code": exc.code,
                    "error_message": exc.message,
                },
            )
            self._emit(EVENT_DEGRADED, identity, now, exc.code)
            return AllowDegraded(reason=exc.code)

        if result.consumed:
            return Allow(
                remaining=result.remaining,
                reset_after_seconds=result.ttl_remaining,
            )

        self._emit(EVENT_REJECTED, identity, now, "limit_exceeded")
        return Reject(retry_after_seconds=result.ttl_remaining)

    def _emit(self, kind: str, identity: str, timestamp: float, reason: str) -> None:
        event = AdmissionEvent(kind=kind, identity=identity, timestamp=timestamp, reason=reason)
        try:
            self._event_sink.emit(event)
        except Exception:
            # A broken sink must not turn a decision into a request failure.
            logger.exception(
                "rate_limit.event_sink_failed",
                extra={"event_kind": kind, "identity_hash": hash_identity(identity)},
            )
