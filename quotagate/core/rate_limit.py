"""Rate limiting dependency for FastAPI routes.

This module wires the admission engine into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency function only.
- Swap-friendly: the bucket store (memory or Redis) sits behind an abstract
  interface and is selected by configuration.
- Fail open: an unavailable store never blocks a request.

Decision rendering:
- Allow -> continue with X-RateLimit-Limit/Remaining/Reset headers.
- Reject -> 429 with Retry-After; the route handler is not invoked.
- Bypass -> continue without rate limit headers.
- AllowDegraded -> continue with X-RateLimit-Limit only.
"""

from __future__ import annotations

import logging
import threading
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response, status

from quotagate.adapters.bucket_store.factory import create_bucket_store
from quotagate.core.auth import resolve_identity
from quotagate.core.config import settings
from quotagate.core.logging import admission_context
from quotagate.services.admission import (
    AdmissionDecisionEngine,
    Allow,
    AllowDegraded,
    Decision,
    QuotaConfig,
    Reject,
    decision_kind,
)
from quotagate.services.bypass import StaticBypassPolicy, parse_identity_list
from quotagate.services.events import LoggingEventSink

logger = logging.getLogger(__name__)


# (config the engine was built from, engine), replaced as one value
_cached: tuple[tuple, AdmissionDecisionEngine] | None = None
_engine_lock = threading.Lock()


def _current_engine_config() -> tuple:
    return (
        settings.store.backend,
        settings.redis.url,
        settings.app.rate_limit_bypass_keys,
        settings.app.rate_limit_key_prefix,
    )


def get_quota_config() -> QuotaConfig:
    """Build the quota configuration from settings.

    Raises:
        ConfigurationAppError: If configured values are not positive.
    """
    return QuotaConfig(
        limit=settings.app.rate_limit_requests,
        window_seconds=settings.app.rate_limit_window_seconds,
    )


def get_admission_engine() -> AdmissionDecisionEngine:
    """Return a process-wide admission engine instance.

    The instance is cached in-module so the store's connection pool (or the
    in-memory counters) survive across requests. If configuration changes
    (primarily in tests), the engine is rebuilt.

    The dependency runs on threadpool workers, so the build is serialized:
    concurrent first requests all receive the same engine and the same store.

    Returns:
        AdmissionDecisionEngine: Configured engine instance.
    """

    global _cached

    config = _current_engine_config()
    cached = _cached
    if cached is not None and cached[0] == config:
        return cached[1]

    with _engine_lock:
        if _cached is None or _cached[0] != config:
            engine = AdmissionDecisionEngine(
                store=create_bucket_store(),
                bypass_policy=StaticBypassPolicy(
                    parse_identity_list(settings.app.rate_limit_bypass_keys)
                ),
                event_sink=LoggingEventSink(),
                key_prefix=settings.app.rate_limit_key_prefix,
            )
            _cached = (config, engine)
            logger.info(
                "rate_limit.engine_configured",
                extra={"backend": settings.store.backend},
            )
        return _cached[1]


def reset_admission_engine() -> None:
    """Drop the cached engine so the next request rebuilds it."""

    global _cached
    with _engine_lock:
        _cached = None


def build_rate_limit_headers(
    decision: Decision,
    quota: QuotaConfig,
    *,
    now: float,
    include_info: bool = True,
) -> dict[str, str]:
    """Translate a decision into response headers.

    Args:
        decision: Admission decision for the request.
        quota: Quota the decision was made against.
        now: Current UNIX time, used to turn relative reset times absolute.
        include_info: Whether to emit the informational X-RateLimit-* headers.

    Returns:
        Header mapping (possibly empty).
    """

    headers: dict[str, str] = {}

    if isinstance(decision, Reject):
        headers["Retry-After"] = str(decision.retry_after_seconds)
        if include_info:
            headers["X-RateLimit-Limit"] = str(quota.limit)
            headers["X-RateLimit-Remaining"] = "0"
            headers["X-RateLimit-Reset"] = str(int(now) + decision.retry_after_seconds)
        return headers

    if not include_info:
        return headers

    if isinstance(decision, Allow):
        headers["X-RateLimit-Limit"] = str(quota.limit)
        headers["X-RateLimit-Remaining"] = str(decision.remaining)
        headers["X-RateLimit-Reset"] = str(int(now) + decision.reset_after_seconds)
    elif isinstance(decision, AllowDegraded):
        headers["X-RateLimit-Limit"] = str(quota.limit)

    return headers


def enforce_rate_limit(
    request: Request,
    response: Response,
    identity: Annotated[str, Depends(resolve_identity)],
) -> Decision | None:
    """FastAPI dependency enforcing the per-identity quota.

    Declared as a plain function so FastAPI runs it in the threadpool; the
    single store round trip then never blocks the event loop.

    Args:
        request: Incoming request; the admission log fields are stored on
            ``request.state.admission`` for the access log line.
        response: Sub-response whose headers are merged into the final response.
        identity: Caller identity (a missing identity already produced a 401).

    Returns:
        The Decision for this request, or None when rate limiting is disabled.

    Raises:
        HTTPException: 429 Too Many Requests when the quota is exhausted.
    """

    if not settings.app.rate_limit_enabled:
        return None

    quota = get_quota_config()
    engine = get_admission_engine()

    with admission_context(identity) as log_fields:
        decision = engine.evaluate(identity, quota)
        log_fields["decision"] = decision_kind(decision)
        request.state.admission = dict(log_fields)

        headers = build_rate_limit_headers(
            decision,
            quota,
            now=engine.now(),
            include_info=settings.app.rate_limit_include_headers,
        )

        if isinstance(decision, Reject):
            logger.info(
                "rate_limit.exceeded",
                extra={
                    "limit": quota.limit,
                    "window_s": quota.window_seconds,
                    "retry_after_s": decision.retry_after_seconds,
                },
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded. Try again later.",
                headers=headers,
            )

        logger.debug("rate_limit.admitted")

    for name, value in headers.items():
        response.headers[name] = value
    return decision
