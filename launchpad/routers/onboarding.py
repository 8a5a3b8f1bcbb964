"""Onboarding status endpoints consumed by the embeddable widget."""

import logging
from typing import Dict

from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi import Query
from pydantic import BaseModel

from launchpad.core.services import Services
from launchpad.dependencies import get_services
from launchpad.dependencies import require_admin
from launchpad.dependencies import tenant_id_path
from launchpad.models.enums import OnboardingField
from launchpad.services.onboarding_store import parse_patch
from launchpad.services.webhook_router import transition_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/onboarding", tags=["onboarding"])


class ToggleRequest(BaseModel):
    field: str


@router.get("/{tenant_id}/status")
async def get_status(
    tenant_id: str = Depends(tenant_id_path),
    skip_api_checks: bool = Query(False, alias="skipApiChecks"),
    services: Services = Depends(get_services),
):
    """Current status; reconciles domain/payment with the platform first.

    Platform failures fall back to the stored status.
    """
    if skip_api_checks:
        snapshot = await services.onboarding.get(tenant_id)
    else:
        snapshot = await services.milestones.refresh_status(tenant_id)
    logger.debug(
        "onboarding.status tenant_id=%s show=%s completed=%s",
        tenant_id,
        snapshot.should_show_widget,
        snapshot.all_tasks_completed,
    )
    return snapshot.to_wire()


@router.post("/{tenant_id}/update")
async def update_status(
    tenant_id: str = Depends(tenant_id_path),
    fields: Dict[str, bool] = Body(...),
    services: Services = Depends(get_services),
):
    # Validate every name before touching storage.
    patch = parse_patch(fields)
    snapshot = await services.onboarding.update(tenant_id, patch)
    await services.broker.broadcast(tenant_id)
    return snapshot.to_wire()


@router.post("/{tenant_id}/toggle")
async def toggle_field(
    body: ToggleRequest,
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
):
    target = OnboardingField.parse(body.field)
    snapshot = await services.onboarding.toggle(tenant_id, target)
    await services.broker.broadcast(tenant_id)
    return snapshot.to_wire()


@router.post("/{tenant_id}/dismiss")
async def dismiss(
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
):
    if await services.onboarding.set_if_changed(tenant_id, OnboardingField.DISMISSED, True):
        await services.broker.broadcast(tenant_id)
        services.tracker.track(tenant_id, transition_event(OnboardingField.DISMISSED, True), {"source": "widget"})
    snapshot = await services.onboarding.get(tenant_id)
    return snapshot.to_wire()


@router.post("/{tenant_id}/check-products")
async def check_products(
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
):
    snapshot = await services.milestones.refresh_products(tenant_id)
    return snapshot.to_wire()


@router.post("/{tenant_id}/reset", dependencies=[Depends(require_admin)])
async def reset_status(
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
):
    snapshot = await services.onboarding.reset(tenant_id)
    await services.broker.broadcast(tenant_id)
    logger.info("onboarding.reset tenant_id=%s", tenant_id)
    return snapshot.to_wire()
