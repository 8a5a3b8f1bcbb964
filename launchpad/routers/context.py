"""Read-only context endpoints the widget script calls on load."""

import logging

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import Request
from fastapi import status

from launchpad.core.services import Services
from launchpad.dependencies import get_services
from launchpad.dependencies import tenant_id_path
from launchpad.exceptions import CrmApiError
from launchpad.models.enums import CredentialKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["context"])

_PROFILE_FIELDS = ("email", "phone", "address", "city", "state", "country", "website", "timezone")


@router.get("/config")
async def client_config(request: Request, services: Services = Depends(get_services)):
    settings = services.settings
    return {
        "apiBase": settings.public_base_url or str(request.base_url).rstrip("/"),
        "environment": settings.environment,
        "userpilotToken": settings.userpilot_key,
    }


@router.get("/location-context")
async def location_context(
    location_id: str = Query("", alias="locationId"),
    services: Services = Depends(get_services),
):
    """Sanitised location profile for client-side identification."""
    tenant_id = location_id.strip()
    if not tenant_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="locationId is required")

    token = await services.resolver.resolve(tenant_id)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Location is not authorized")

    try:
        location = await services.crm.get_location(tenant_id, token)
    except CrmApiError as exc:
        logger.warning("context.location_failed tenant_id=%s status=%s error=%s", tenant_id, exc.status_code, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch location context"
        ) from exc

    context = {
        "locationId": location.get("id") or tenant_id,
        "name": location.get("name") or "Unknown",
        "companyId": location.get("companyId") or "",
    }
    for name in _PROFILE_FIELDS:
        context[name] = location.get(name) or ""
    return context


@router.get("/agency/status")
async def agency_status(
    company_id: str | None = Query(None, alias="companyId"),
    services: Services = Depends(get_services),
):
    credential = await services.credentials.find_first_by_kind(CredentialKind.PARENT, parent_account_id=company_id)
    if credential is None:
        return {"authorized": False, "installation": None}
    return {
        "authorized": True,
        "installation": {
            "accountId": credential.parent_account_id,
            "expiresAt": credential.expires_at.isoformat() if credential.expires_at else None,
            "createdAt": credential.created_at.isoformat() if credential.created_at else None,
        },
    }


@router.get("/sub-accounts/{tenant_id}")
async def sub_account(
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
):
    record = await services.ownership_store.get(tenant_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sub-account not found")
    return {"success": True, "subAccount": record.to_dict()}
