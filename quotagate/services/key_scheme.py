"""Fixed-window bucket key derivation.

Every request for the same identity inside the same discrete window maps to
the same key; once the window index advances, a disjoint key is produced and
the shared store starts from an absent record. Nothing here reads a clock or
touches the store, so all functions are pure.

Known looseness:
    Instances whose wall clocks disagree may disagree on the current window
    near a boundary, and fixed windows allow up to ``2 * limit`` requests
    across a boundary (a full window's worth at the end of one and again at
    the start of the next). Both are accepted trade-offs of fixed windowing.
"""

from __future__ import annotations

import hashlib
import math

DEFAULT_KEY_PREFIX = "ratelimit"


def window_index(now_seconds: float, window_seconds: int) -> int:
    """Return ``floor(now_seconds / window_seconds)``.

    Raises:
        ValueError: If window_seconds is not positive.
    """
    if window_seconds < 1:
        raise ValueError("window_seconds must be >= 1")
    return int(now_seconds // window_seconds)


def window_bounds(now_seconds: float, window_seconds: int) -> tuple[int, int]:
    """Compute fixed-window boundaries for a given timestamp.

    Returns:
        Tuple of (window_start_epoch_seconds, reset_at_epoch_seconds).
    """
    window_start = window_index(now_seconds, window_seconds) * window_seconds
    return window_start, window_start + window_seconds


def seconds_until_reset(now_seconds: float, window_seconds: int) -> int:
    """Whole seconds until the current window ends, in ``[1, window_seconds]``."""
    _, reset_at = window_bounds(now_seconds, window_seconds)
    return min(window_seconds, max(1, int(math.ceil(reset_at - now_seconds))))


def _identity_digest(identity: str) -> str:
    # Keeps raw API keys out of the shared store and makes the separator safe.
    return hashlib.sha256(identity.encode("utf-8")).hexdigest()[:32]


def build_bucket_key(
    identity: str,
    now_seconds: float,
    window_seconds: int,
    *,
    prefix: str = DEFAULT_KEY_PREFIX,
) -> str:
    """Build the bucket key addressing this identity's record for the window.

    Args:
        identity: Opaque caller token (e.g. an API key).
        now_seconds: Current UNIX time in seconds.
        window_seconds: Fixed window size in seconds.
        prefix: Namespace prefix shared by every instance.

    Returns:
        Key of the form ``{prefix}:{identity_digest}:{window_index}``.

    Examples:
        >>> build_bucket_key("k1", 119.0, 60) == build_bucket_key("k1", 60.0, 60)
        True
        >>> build_bucket_key("k1", 119.0, 60) == build_bucket_key("k1", 120.0, 60)
        False
    """
    index = window_index(now_seconds, window_seconds)
    return f"{prefix}:{_identity_digest(identity)}:{index}"
