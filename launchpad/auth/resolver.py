"""Token resolver for CRM API calls made on behalf of a tenant.

Resolution order, stopping at the first usable credential:
1. Tenant-level credential (refreshed if expired)
2. The owning parent account's credential (refreshed if expired)
3. Any parent-level credential (single-agency deployments)
4. None: the tenant is not currently authorized
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from launchpad.auth.credentials import CredentialRefresher
from launchpad.auth.ownership import TenantOwnershipCache
from launchpad.models.enums import CredentialKind
from launchpad.services.credential_store import Credential
from launchpad.services.credential_store import CredentialStore
from launchpad.services.credential_store import parent_subject_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Outcome of a resolve, including why it failed when it did.

    ``tenant_refresh_failed``/``parent_refresh_failed`` let callers tell an
    expired grant apart from a tenant that was never authorized.
    """

    access_token: str | None = None
    kind: CredentialKind | None = None
    subject_id: str | None = None
    tenant_refresh_failed: bool = False
    parent_refresh_failed: bool = False

    @property
    def authorized(self) -> bool:
        return self.access_token is not None


class TokenResolver:
    """Picks a currently valid bearer token for an arbitrary tenant id."""

    def __init__(
        self,
        store: CredentialStore,
        refresher: CredentialRefresher,
        ownership: TenantOwnershipCache,
    ):
        self._store = store
        self._refresher = refresher
        self._ownership = ownership

    async def resolve(self, tenant_id: str) -> str | None:
        return (await self.resolve_detailed(tenant_id)).access_token

    async def resolve_detailed(self, tenant_id: str) -> Resolution:
        """Walk the credential chain; never raises."""
        try:
            return await self._resolve(tenant_id)
        except Exception:
            logger.exception("token_resolver.failed tenant_id=%s", tenant_id)
            return Resolution()

    async def _resolve(self, tenant_id: str) -> Resolution:
        tenant_refresh_failed = False
        parent_refresh_failed = False
        tried: set[str] = set()
        # Parent subjects whose refresh already failed during this resolve.
        failed: set[str] = set()

        # 1. Tenant credential ------------------------------------------------
        tenant_cred = await self._store.get_by_subject_id(tenant_id)
        if tenant_cred is not None and tenant_cred.kind == CredentialKind.TENANT:
            tried.add(tenant_cred.subject_id)
            if tenant_cred.parent_account_id:
                self._ownership.remember(tenant_id, tenant_cred.parent_account_id)
            usable = await self._refresher.ensure_fresh(tenant_cred)
            if usable is not None:
                return self._found(tenant_id, usable, "tenant")
            tenant_refresh_failed = True

        # 2. Owning parent's credential ----------------------------------------
        owner = await self._ownership.owner_of(tenant_id, failed=failed)
        if owner:
            subject = parent_subject_id(owner)
            tried.add(subject)
            parent_cred = await self._store.get_by_subject_id(subject)
            if parent_cred is not None:
                usable = await self._refresher.ensure_fresh(parent_cred)
                if usable is not None:
                    return self._found(tenant_id, usable, "owner")
                parent_refresh_failed = True

        # 3. Any parent credential ---------------------------------------------
        fallback = await self._store.find_first_by_kind(CredentialKind.PARENT)
        if fallback is not None and fallback.subject_id in failed:
            parent_refresh_failed = True
        elif fallback is not None and fallback.subject_id not in tried:
            usable = await self._refresher.ensure_fresh(fallback)
            if usable is not None:
                return self._found(tenant_id, usable, "fallback")
            parent_refresh_failed = True

        logger.info(
            "token_resolver.resolve tenant_id=%s source=none tenant_refresh_failed=%s parent_refresh_failed=%s",
            tenant_id,
            tenant_refresh_failed,
            parent_refresh_failed,
        )
        return Resolution(
            tenant_refresh_failed=tenant_refresh_failed,
            parent_refresh_failed=parent_refresh_failed,
        )

    @staticmethod
    def _found(tenant_id: str, credential: Credential, source: str) -> Resolution:
        logger.debug(
            "token_resolver.resolve tenant_id=%s source=%s subject_id=%s kind=%s",
            tenant_id,
            source,
            credential.subject_id,
            credential.kind.value,
        )
        return Resolution(
            access_token=credential.access_token,
            kind=credential.kind,
            subject_id=credential.subject_id,
        )


__all__ = ["Resolution", "TokenResolver"]
