"""OpenAPI customization utilities.

Enriches the generated schema with:
- API Key security scheme (``X-API-Key``), with health endpoints exempt
- Tags metadata
- The rate limit response headers and the 401/429 responses every
  quota-protected operation can return
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMIT_HEADERS: Dict[str, Any] = {
    "X-RateLimit-Limit": {
        "description": "Requests allowed per window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Reset": {
        "description": "UNIX time at which the current window resets.",
        "schema": {"type": "integer"},
    },
}

_QUOTA_RESPONSES: Dict[str, Any] = {
    "401": {"description": "No API key was provided."},
    "429": {
        "description": "Quota exhausted for the current window.",
        "headers": {
            "Retry-After": {
                "description": "Seconds until the window resets.",
                "schema": {"type": "integer"},
            },
            **_RATE_LIMIT_HEADERS,
        },
    },
}

_TAGS = [
    {
        "name": "Quota",
        "description": "Quota-protected endpoints reporting admission decisions.",
    },
    {
        "name": "Health",
        "description": "Liveness and readiness checks.",
    },
]


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add security and rate limit docs."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {}).setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "API key identifying the caller for quota purposes.",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        tags.extend(t for t in _TAGS if t["name"] not in existing_tag_names)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.startswith("/health"):
                    method_obj["security"] = []
                    continue
                responses = method_obj.setdefault("responses", {})
                for code, spec in _QUOTA_RESPONSES.items():
                    responses.setdefault(code, spec)
                ok = responses.get("200")
                if isinstance(ok, dict):
                    ok.setdefault("headers", {}).update(_RATE_LIMIT_HEADERS)

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
