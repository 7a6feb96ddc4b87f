"""OpenAPI metadata and customization utilities.

Adds the two security schemes used by the API and assigns them per path:
- ``ApiKeyAuth`` (``X-API-Key``) for service endpoints (rate limiting,
  reconciliation)
- ``BearerAuth`` (Supabase access token) for user subscription endpoints
The health check and the gateway webhooks (verified per delivery) require neither.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

API_KEY_PATHS = ("/check-rate-limit", "/increment-rate-limit", "/record-attempt", "/reconcile")
PUBLIC_PATHS = ("/health", "/webhook")


def _security_for(path: str) -> list[dict[str, list]]:
    if path.endswith(PUBLIC_PATHS):
        return []
    if path.endswith(API_KEY_PATHS):
        return [{"ApiKeyAuth": []}]
    return [{"BearerAuth": []}]


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add security schemes and tags."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Service API key for server-to-server calls.",
            },
        )
        security_schemes.setdefault(
            "BearerAuth",
            {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Supabase access token of the signed-in user.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Rate Limit",
                "description": "Attempt limits for OTP and other sensitive actions.",
            },
            {
                "name": "Subscription",
                "description": "Plans, checkout, cancellation and payment webhooks.",
            },
            {
                "name": "Health",
                "description": "Liveness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if isinstance(method_obj, dict):
                    method_obj["security"] = _security_for(path)

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
