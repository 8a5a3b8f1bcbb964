"""Installation status and tenant/parent-account administration."""

import logging

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import status

from launchpad.core.services import Services
from launchpad.dependencies import get_services
from launchpad.dependencies import require_admin
from launchpad.dependencies import tenant_id_path

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["installation"])


@router.get("/installation/{tenant_id}")
async def installation_status(
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
):
    """``{authorized, tokenType, errorMessage}`` for the widget's auth banner."""
    result = await services.installation.check(tenant_id)
    return result.model_dump(by_alias=True)


@router.delete("/installation/{tenant_id}", dependencies=[Depends(require_admin)])
async def uninstall(
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
):
    return await services.installation.uninstall(tenant_id)


@router.get("/parents/{parent_account_id}/tenants")
async def list_parent_tenants(
    parent_account_id: str,
    include_inactive: bool = Query(False, alias="includeInactive"),
    services: Services = Depends(get_services),
):
    rows = await services.ownership_store.list_for_parent(parent_account_id, active_only=not include_inactive)
    return {"parentAccountId": parent_account_id, "tenants": [row.to_dict() for row in rows]}


@router.get("/parents/{parent_account_id}/stats")
async def parent_stats(parent_account_id: str, services: Services = Depends(get_services)):
    return {"parentAccountId": parent_account_id, **(await services.ownership_store.stats(parent_account_id))}


@router.post("/tenants/{tenant_id}/verify")
async def verify_tenant(
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
):
    """Ask the platform which parent account owns the tenant."""
    found = await services.ownership.verify(tenant_id)
    if found is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Location is not visible to any authorized agency",
        )
    return {"valid": True, **found.to_dict()}


@router.post("/tenants/{tenant_id}/deactivate", dependencies=[Depends(require_admin)])
async def deactivate_tenant(
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
):
    deactivated = await services.ownership_store.deactivate(tenant_id)
    if not deactivated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown location")
    services.ownership.forget(tenant_id)
    logger.info("installation.deactivate tenant_id=%s", tenant_id)
    return {"tenantId": tenant_id, "active": False}
