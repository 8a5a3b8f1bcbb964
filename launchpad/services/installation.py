"""Installation (authorization) status for a tenant."""

from __future__ import annotations

import logging

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from launchpad.auth.ownership import TenantOwnershipCache
from launchpad.auth.resolver import TokenResolver
from launchpad.models.enums import CredentialKind
from launchpad.services.credential_store import CredentialStore
from launchpad.services.onboarding_store import OnboardingStore

logger = logging.getLogger(__name__)

TENANT_EXPIRED_MESSAGE = "Your authorization has expired. Please reauthorize this app."
PARENT_EXPIRED_MESSAGE = (
    "Your authorization has expired. Please contact your agency administrator to reauthorize this app."
)
UNAUTHORIZED_MESSAGE = "Agency administrator needs to authorize this app. Please contact your agency admin."


class InstallationStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    authorized: bool
    token_type: str | None = Field(default=None, alias="tokenType")
    error_message: str | None = Field(default=None, alias="errorMessage")


class InstallationService:
    def __init__(
        self,
        resolver: TokenResolver,
        credentials: CredentialStore,
        onboarding: OnboardingStore,
        ownership: TenantOwnershipCache,
    ):
        self._resolver = resolver
        self._credentials = credentials
        self._onboarding = onboarding
        self._ownership = ownership

    async def check(self, tenant_id: str) -> InstallationStatus:
        resolution = await self._resolver.resolve_detailed(tenant_id)
        if resolution.authorized:
            token_type = "location" if resolution.kind == CredentialKind.TENANT else "agency"
            return InstallationStatus(authorized=True, token_type=token_type)

        # An expired tenant grant is the tenant's own fix; an expired parent
        # grant needs the agency admin.
        if resolution.tenant_refresh_failed:
            message = TENANT_EXPIRED_MESSAGE
        elif resolution.parent_refresh_failed:
            message = PARENT_EXPIRED_MESSAGE
        else:
            message = UNAUTHORIZED_MESSAGE
        logger.info("installation.unauthorized tenant_id=%s message=%s", tenant_id, message)
        return InstallationStatus(authorized=False, token_type=None, error_message=message)

    async def uninstall(self, tenant_id: str) -> dict[str, bool]:
        """Explicit tenant reset: drop its credential and status row."""
        credential_deleted = await self._credentials.delete_by_subject_id(tenant_id)
        status_deleted = await self._onboarding.delete(tenant_id)
        self._ownership.forget(tenant_id)
        logger.info(
            "installation.uninstall tenant_id=%s credential_deleted=%s status_deleted=%s",
            tenant_id,
            credential_deleted,
            status_deleted,
        )
        return {"credentialDeleted": credential_deleted, "statusDeleted": status_deleted}


__all__ = [
    "InstallationService",
    "InstallationStatus",
    "PARENT_EXPIRED_MESSAGE",
    "TENANT_EXPIRED_MESSAGE",
    "UNAUTHORIZED_MESSAGE",
]
