"""CRM platform webhook receiver.

Always acknowledges with 200 so the platform never retries because of a
local bug; the router logs and audits everything it cannot apply.
"""

import json
import logging

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Request

from launchpad.core.services import Services
from launchpad.dependencies import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/crm")
async def crm_webhook(request: Request, services: Services = Depends(get_services)):
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("webhooks.invalid_body content_type=%s", request.headers.get("content-type"))
        payload = {}

    outcome = await services.webhooks.handle(payload)
    return {
        "received": True,
        "routed": outcome.routed,
        "matched": outcome.matched,
        "changed": {f.value: v for f, v in outcome.changed.items()},
    }
