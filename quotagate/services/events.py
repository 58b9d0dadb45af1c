"""Observability sink for admission events.

The engine emits exactly one event per rejected request and one per request
admitted while the store was unavailable. It never reads from the sink.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from quotagate.core.logging import hash_identity

logger = logging.getLogger(__name__)

EVENT_REJECTED = "rejected"
EVENT_DEGRADED = "degraded"


@dataclass(frozen=True)
class AdmissionEvent:
    """A noteworthy admission outcome.

    Attributes:
        kind: ``rejected`` or ``degraded``.
        identity: Caller identity the decision applied to.
        timestamp: UNIX epoch seconds when the decision was made.
        reason: Short machine-readable reason (e.g. ``limit_exceeded``).
    """

    kind: str
    identity: str
    timestamp: float
    reason: str


class AbstractEventSink(ABC):
    """Interface for admission event sinks."""

    @abstractmethod
    def emit(self, event: AdmissionEvent) -> None:
        raise NotImplementedError


class LoggingEventSink(AbstractEventSink):
    """Writes each event as one structured warning log line."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._logger = log or logger

    def emit(self, event: AdmissionEvent) -> None:
        self._logger.warning(
            f"rate_limit.{event.kind}",
            extra={
                "identity_hash": hash_identity(event.identity),
                "event_ts": event.timestamp,
                "reason": event.reason,
            },
        )
