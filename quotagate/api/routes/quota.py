from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from quotagate.core.config import settings
from quotagate.core.rate_limit import enforce_rate_limit
from quotagate.schemas.quota import QuotaStatusResponse
from quotagate.services.admission import Allow, Decision, decision_kind

router = APIRouter(tags=["Quota"])


@router.get("/quota", response_model=QuotaStatusResponse)
def quota_status(
    decision: Annotated[Decision | None, Depends(enforce_rate_limit)],
) -> QuotaStatusResponse:
    """Report the admission decision this request received.

    The call itself counts against the caller's quota, which makes it a cheap
    way for clients to check their remaining allowance.

    Returns:
        QuotaStatusResponse: Decision label plus limit/remaining/reset when
            they are known.
    """

    if decision is None:
        return QuotaStatusResponse(decision="disabled")

    response = QuotaStatusResponse(
        decision=decision_kind(decision),
        limit=settings.app.rate_limit_requests,
        window_seconds=settings.app.rate_limit_window_seconds,
    )
    if isinstance(decision, Allow):
        response.remaining = decision.remaining
        response.reset_after_seconds = decision.reset_after_seconds
    return response
