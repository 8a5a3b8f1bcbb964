"""OAuth install flow for the CRM marketplace app.

``/oauth/install`` redirects the installer to the platform's consent page;
``/oauth/callback`` exchanges the code and stores the credential encrypted.
Agency-level installs (``userType == "Company"``) land under the synthetic
subject ``agency:{companyId}``.
"""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Query
from fastapi import status
from fastapi.responses import RedirectResponse

from launchpad.core.services import Services
from launchpad.dependencies import get_services
from launchpad.exceptions import CrmApiError
from launchpad.models.enums import CredentialKind
from launchpad.services.credential_store import Credential
from launchpad.services.credential_store import parent_subject_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth", tags=["oauth"])


@router.get("/install")
def install(services: Services = Depends(get_services)) -> RedirectResponse:
    settings = services.settings
    if not settings.crm_client_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="CRM OAuth not configured (missing CRM_CLIENT_ID)",
        )

    params = {
        "response_type": "code",
        "client_id": settings.crm_client_id,
        "scope": settings.crm_scopes,
        "state": services.oauth_states.issue(),
    }
    if settings.crm_redirect_uri:
        params["redirect_uri"] = settings.crm_redirect_uri

    return RedirectResponse(url=f"{settings.crm_authorize_url}?{urlencode(params)}", status_code=302)


@router.get("/callback")
async def callback(
    code: str = Query(...),
    state: str | None = Query(None),
    services: Services = Depends(get_services),
):
    # The marketplace can start an install without our /install redirect,
    # so a missing state is allowed; a present one must be valid.
    if state is not None and not services.oauth_states.consume(state):
        logger.warning("oauth.callback invalid_state")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired state")

    if not services.crm.has_client_credentials:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="CRM OAuth not configured on server",
        )

    try:
        grant = await services.crm.exchange_code(code)
    except CrmApiError as exc:
        logger.warning("oauth.callback exchange_failed status=%s error=%s", exc.status_code, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Token exchange failed") from exc

    if grant.is_company:
        if not grant.company_id:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Agency install without companyId")
        credential = Credential(
            subject_id=parent_subject_id(grant.company_id),
            kind=CredentialKind.PARENT,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
            scope=grant.scope,
            parent_account_id=grant.company_id,
        )
    else:
        if not grant.location_id:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Location install without locationId")
        credential = Credential(
            subject_id=grant.location_id,
            kind=CredentialKind.TENANT,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at,
            scope=grant.scope,
            parent_account_id=grant.company_id,
        )

    stored = await services.credentials.upsert(credential)
    if grant.location_id and grant.company_id:
        services.ownership.remember(grant.location_id, grant.company_id)
        await services.ownership_store.record(grant.location_id, grant.company_id)

    logger.info("oauth.callback installed subject_id=%s kind=%s", stored.subject_id, stored.kind.value)
    return {
        "success": True,
        "tokenType": "agency" if stored.kind == CredentialKind.PARENT else "location",
        "locationId": grant.location_id,
        "companyId": grant.company_id,
    }
