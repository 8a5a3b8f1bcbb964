"""FastAPI dependency providers."""

from __future__ import annotations

import secrets

from fastapi import Header
from fastapi import HTTPException
from fastapi import Path
from fastapi import Request
from fastapi import status

from launchpad.core.services import Services


def get_services(request: Request) -> Services:
    """Return the container built by the application lifespan."""
    return request.app.state.services


def tenant_id_path(tenant_id: str = Path(..., min_length=1)) -> str:
    value = tenant_id.strip()
    if not value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="locationId is required")
    return value


def require_admin(request: Request, x_admin_key: str | None = Header(default=None)) -> None:
    """Guard destructive endpoints with the ``ADMIN_API_KEY`` shared secret."""
    expected = request.app.state.services.settings.admin_api_key
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API disabled")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")


__all__ = ["get_services", "require_admin", "tenant_id_path"]
