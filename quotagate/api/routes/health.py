from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from quotagate.core.errors import StoreUnavailableError
from quotagate.core.rate_limit import get_admission_engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
def readiness_check() -> JSONResponse:
    """Readiness check that probes the bucket store.

    An unreachable store does not stop traffic (admission fails open), but it
    is reported here with a 503 so operators and load balancers can see that
    quotas are not currently enforced.
    """

    store = get_admission_engine().store
    try:
        store.ping()
    except StoreUnavailableError as exc:
        logger.warning(
            "health.store_unavailable",
            extra={"backend": store.backend_name, "error_code": exc.code},
        )
        return JSONResponse(
            status_code=503,
            content={"status": "degraded", "store": store.backend_name},
        )

    return JSONResponse(
        status_code=200,
        content={"status": "ok", "store": store.backend_name},
    )
