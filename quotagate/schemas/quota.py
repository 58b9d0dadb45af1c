from __future__ import annotations

from pydantic import BaseModel, Field


class QuotaStatusResponse(BaseModel):
    """Admission outcome reported back to the caller."""

    decision: str = Field(
        ...,
        description="One of: allow, bypass, allow_degraded, disabled",
    )
    limit: int | None = Field(None, description="Configured requests per window")
    window_seconds: int | None = Field(None, description="Window size in seconds")
    remaining: int | None = Field(
        None,
        description="Requests left in the current window (only when known)",
    )
    reset_after_seconds: int | None = Field(
        None,
        description="Seconds until the current window resets (only when known)",
    )
