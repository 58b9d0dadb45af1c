"""Caller identity resolution.

The identity used for quota purposes is the API key presented in the
``X-API-Key`` header. It is treated as an opaque token: any non-empty value
gets its own independent quota. Verifying that a key is genuine belongs to
the authentication layer in front of this service, not here.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header

from quotagate.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)

IDENTITY_HEADER = "X-API-Key"


def extract_identity(raw_header: str | None) -> str | None:
    """Normalize a header value into an identity.

    Pure function without FastAPI dependencies for easy testing.

    Examples:
        >>> extract_identity("  key-1 ")
        'key-1'
        >>> extract_identity("   ") is None
        True
        >>> extract_identity(None) is None
        True
    """
    if raw_header is None:
        return None
    identity = raw_header.strip()
    return identity or None


async def resolve_identity(
    x_api_key: Annotated[str | None, Header(alias=IDENTITY_HEADER)] = None,
) -> str:
    """FastAPI dependency returning the caller identity.

    Usage:
        @router.get("/protected")
        async def protected(identity: str = Depends(resolve_identity)):
            ...

    Raises:
        AuthenticationAppError: If no identity could be determined (401).
    """
    identity = extract_identity(x_api_key)
    if identity is None:
        logger.warning(
            "auth.missing_identity",
            extra={"api_key_present": x_api_key is not None},
        )
        raise AuthenticationAppError(
            code="identity_missing",
            message=f"Missing API key. Provide {IDENTITY_HEADER} header.",
        )
    return identity
