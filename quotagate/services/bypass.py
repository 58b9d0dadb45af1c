"""Bypass (allow-list) policies consulted before any quota enforcement.

The authoritative list of exempt identities is owned elsewhere; policies here
only answer the lookup, and must do so without I/O since they run on every
request.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable


def parse_identity_list(raw: str | None) -> frozenset[str]:
    """Parse a comma-separated list of identities.

    Examples:
        >>> sorted(parse_identity_list("svc-a, svc-b ,"))
        ['svc-a', 'svc-b']
        >>> parse_identity_list(None)
        frozenset()
    """
    if not raw:
        return frozenset()
    return frozenset(item.strip() for item in raw.split(",") if item.strip())


class AbstractBypassPolicy(ABC):
    """Interface for identity exemption lookups."""

    @abstractmethod
    def is_exempt(self, identity: str) -> bool:
        """Return True if the identity must skip quota enforcement."""
        raise NotImplementedError


class StaticBypassPolicy(AbstractBypassPolicy):
    """Exemptions resolved from a fixed, pre-loaded set of identities."""

    def __init__(self, exempt_identities: Iterable[str] = ()) -> None:
        self._exempt = frozenset(exempt_identities)

    def is_exempt(self, identity: str) -> bool:
        return identity in self._exempt
