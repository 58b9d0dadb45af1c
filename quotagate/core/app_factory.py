"""Application factory for the FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build isolated app instances.
"""

from __future__ import annotations

from fastapi import FastAPI

from quotagate.api.routes import health_router, quota_router
from quotagate.core.config import settings
from quotagate.core.exception_handlers import setup_exception_handlers
from quotagate.core.logging import configure_logging
from quotagate.core.middleware import request_id_middleware
from quotagate.core.openapi import apply_openapi_customizations


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="QuotaGate",
        description=(
            "Distributed admission control: enforces a per-API-key request "
            "quota per fixed window across every instance sharing one bucket "
            "store, returning X-RateLimit-* headers and 429 with Retry-After "
            "when exhausted. Fails open when the store is unavailable."
        ),
        version="0.1.0",
        debug=settings.app.debug,
    )

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(quota_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
