"""
Admin API key check for /admin routes.
"""

import secrets

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from studio_assistant.core.config import settings

API_KEY_HEADER = "X-Admin-API-Key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_admin_auth(api_key: str | None = Security(api_key_header)) -> bool:
    """
    Dependency guarding the sweep and contact-inspection routes.

    Dev without ADMIN_API_KEY is open; production without one is a
    misconfiguration and raises RuntimeError.
    """
    expected = settings.admin_api_key
    if not expected:
        if settings.app_env == "production":
            raise RuntimeError("ADMIN_API_KEY must be set in production (or run with APP_ENV=dev)")
        return True

    if not api_key:
        raise HTTPException(status_code=401, detail=f"Missing API key. Send it in the {API_KEY_HEADER} header.")
    if not secrets.compare_digest(api_key, expected):
        raise HTTPException(status_code=403, detail="Invalid API key.")
    return True
