"""OpenAPI metadata and customization utilities.

Provides a helper to enrich the generated OpenAPI schema with:
- Tags metadata
- API token security scheme (``api_key`` header) with per-path overrides
- The limiter's 400/429/500 responses on every rate-limited operation

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable

from fastapi import FastAPI

_ERROR_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "error": {
            "type": "object",
            "properties": {
                "code": {"type": "string"},
                "message": {"type": "string"},
                "request_id": {"type": "string", "nullable": True},
                "details": {"type": "object"},
            },
            "required": ["code", "message"],
        }
    },
}

_LIMITER_RESPONSES: Dict[str, str] = {
    "400": "No API token and no forwarded client IP on the request.",
    "429": "Rate limit exceeded for the caller's token or IP.",
    "500": "The rate limit counter store is unavailable.",
}


def apply_openapi_customizations(
    app: FastAPI,
    *,
    token_header: str,
    exempt_paths: Iterable[str] = (),
) -> None:
    """Patch FastAPI's OpenAPI generation to describe rate limiting.

    - Injects components.securitySchemes for the API token header
    - Marks all operations as accepting the token, then exempts
      ``exempt_paths`` by setting ``security: []``
    - Documents the limiter's error responses on limited operations
    """

    original_openapi = app.openapi
    exempt = set(exempt_paths)

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("schemas", {}).setdefault("ErrorResponse", _ERROR_SCHEMA)
        components.setdefault("securitySchemes", {}).setdefault(
            "ApiTokenAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": token_header,
                "description": (
                    "Optional API token. Token callers get the token quota; "
                    "others are limited by the first X-Forwarded-For hop."
                ),
            },
        )

        # Token is optional: an empty requirement means anonymous access is allowed
        schema.setdefault("security", [{"ApiTokenAuth": []}, {}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {"name": "Ping", "description": "Rate-limited endpoints."},
            {"name": "Health", "description": "Liveness checks (not rate limited)."},
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        error_ref = {"$ref": "#/components/schemas/ErrorResponse"}
        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path in exempt:
                    method_obj["security"] = []
                    continue
                responses = method_obj.setdefault("responses", {})
                for status, description in _LIMITER_RESPONSES.items():
                    responses.setdefault(
                        status,
                        {
                            "description": description,
                            "content": {"application/json": {"schema": error_ref}},
                        },
                    )

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
