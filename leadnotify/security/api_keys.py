"""API key checks for operator endpoints."""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from ..config import settings


def _extract_token(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()

    return (
        request.headers.get("x-admin-api-key", "").strip()
        or request.headers.get("x-api-key", "").strip()
    )


def require_admin_api_key(request: Request) -> None:
    """Enforce the admin API key when configured; fail closed if asked to."""
    cfg = getattr(request.app.state, "settings", settings)
    expected = cfg.admin_api_key.strip()
    if not expected:
        if cfg.security_fail_closed:
            raise HTTPException(status_code=503, detail="Admin API key is not configured")
        return

    provided = _extract_token(request)
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid admin API key")
