"""Structured logging for the admission service.

Every record is rendered as one JSON line (or a plain line for local runs).
Two pieces of context are attached to records while they are bound:

- the request id, bound by the HTTP middleware for the whole request;
- the admission context (hashed caller identity, then the decision taken),
  bound by the rate limiting dependency around ``evaluate``.

Logs emitted during an evaluation therefore correlate to a caller without
the call sites passing identity around. Raw identities never
reach a handler: fields named like credentials are redacted and identities
are only logged through ``hash_identity``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from quotagate.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

# Field names whose values are never written, compared case-insensitively
SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "api_key",
        "x-api-key",
        "identity",
        "authorization",
        "token",
        "secret",
        "password",
        "rate_limit_bypass_keys",
        "app_rate_limit_bypass_keys",
        "cookie",
        "set-cookie",
        "redis_url",
    }
)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_admission_var: ContextVar[dict[str, str] | None] = ContextVar("admission", default=None)


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_identity(identity: str) -> str:
    """Return a short, stable fingerprint of an identity safe for log output."""

    return hashlib.sha256(identity.encode()).hexdigest()[:16]


@contextmanager
def admission_context(identity: str) -> Iterator[dict[str, str]]:
    """Bind the caller's hashed identity to every record logged in the block.

    The yielded mapping stays live for the duration of the block: fields added
    to it (``decision`` once the engine has answered) show up on later records.

    Example:
        >>> with admission_context("k1") as fields:
        ...     fields["decision"] = "allow"
    """

    fields = {"identity_hash": hash_identity(identity)}
    token = _admission_var.set(fields)
    try:
        yield fields
    finally:
        _admission_var.reset(token)


def redact(value: Any, sensitive_keys: frozenset[str] = SENSITIVE_KEYS) -> Any:
    """Replace sensitive mapping values, descending into nested containers."""

    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in sensitive_keys else redact(item, sensitive_keys)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(item, sensitive_keys) for item in value)
    return value


def record_extras(
    record: LogRecord, sensitive_keys: frozenset[str] = SENSITIVE_KEYS
) -> dict[str, Any]:
    """Return the caller-supplied fields of a record, redacted."""

    extras = {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }
    return redact(extras, sensitive_keys)


class ContextFilter(logging.Filter):
    """Copy the bound request id and admission fields onto each record.

    Values passed explicitly through ``extra`` win over bound ones.
    """

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        bound: dict[str, Any] = {"request_id": _request_id_var.get()}
        bound.update(_admission_var.get() or {})
        for key, value in bound.items():
            if value is not None and getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive extras in place so every formatter sees safe values."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS))

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in record_extras(record, self.sensitive_keys).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: fixed envelope plus redacted extras."""

    def __init__(self, *, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS))

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(record_extras(record, self.sensitive_keys))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(log_settings.file_path or "logs/quotagate.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single root handler with context binding and redaction.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(ContextFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # request.completed from the middleware is the access log
    logging.getLogger("uvicorn.access").propagate = False
