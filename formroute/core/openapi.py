"""OpenAPI metadata and customization utilities.

Adds to the generated schema:
- API Key security scheme (``X-API-Key``)
- Tags metadata
- Per-path security: form management requires the admin key, submission
  listing takes the form's own key, submit and health are public

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_PUBLIC_PATH_PREFIXES = ("/health", "/submit/")


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    - Injects components.securitySchemes for API Key auth (header ``X-API-Key``)
    - Marks all operations as requiring API Key by default, then exempts the
      submit and health endpoints by setting ``security: []``
    - Adds tags metadata if not present
    """

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
                "description": (
                    "Admin key for /forms management; the form's own key for "
                    "listing its submissions (also accepted as ?api_key=)."
                ),
            },
        )

        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Submissions",
                "description": "Public submission intake and per-form submission listing.",
            },
            {
                "name": "Forms",
                "description": "Form definition management (admin key).",
            },
            {
                "name": "Health",
                "description": "Liveness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        # Submit enforces the form's own policy (optional key, origin allowlist).
        paths = schema.get("paths", {})
        for path, methods in paths.items():
            if path.startswith(_PUBLIC_PATH_PREFIXES):
                for method_obj in methods.values():
                    if isinstance(method_obj, dict):
                        method_obj["security"] = []

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
