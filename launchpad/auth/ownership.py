"""Tenant to parent-account ownership lookup.

Lookup order: in-process memo, durable ``tenant_ownership`` record, then the
CRM API using each known parent credential in turn.  Only positive answers
are cached; a miss walks the whole chain again on the next lookup.
"""

from __future__ import annotations

import logging
from typing import MutableMapping

from launchpad import metrics
from launchpad.auth.credentials import CredentialRefresher
from launchpad.crm.client import CrmClient
from launchpad.exceptions import CrmApiError
from launchpad.exceptions import CrmNotFound
from launchpad.exceptions import CrmUnauthorized
from launchpad.models.enums import CredentialKind
from launchpad.services.credential_store import CredentialStore
from launchpad.services.credential_store import Ownership
from launchpad.services.credential_store import OwnershipStore

logger = logging.getLogger(__name__)


class TenantOwnershipCache:
    """Resolves which parent account owns a tenant.

    ``memo`` is injected so each process (or test) owns its own map; pass a
    shared dict to share it between components.
    """

    def __init__(
        self,
        ownership_store: OwnershipStore,
        credential_store: CredentialStore,
        refresher: CredentialRefresher,
        crm: CrmClient,
        *,
        memo: MutableMapping[str, str] | None = None,
    ):
        self._ownership = ownership_store
        self._credentials = credential_store
        self._refresher = refresher
        self._crm = crm
        self._memo: MutableMapping[str, str] = memo if memo is not None else {}

    def remember(self, tenant_id: str, parent_account_id: str) -> None:
        self._memo[tenant_id] = parent_account_id

    def forget(self, tenant_id: str) -> None:
        self._memo.pop(tenant_id, None)

    async def owner_of(self, tenant_id: str, *, failed: set[str] | None = None) -> str | None:
        """Parent account owning *tenant_id*, or None.

        Parent subjects whose refresh failed during the platform check are
        added to *failed* so the caller does not refresh them again.
        """
        cached = self._memo.get(tenant_id)
        if cached:
            metrics.ownership_lookups_total.labels(source="memo").inc()
            return cached

        try:
            record = await self._ownership.get(tenant_id)
        except Exception:
            logger.exception("ownership_cache.durable_read_failed tenant_id=%s", tenant_id)
            record = None

        if record is not None and record.active:
            self._memo[tenant_id] = record.parent_account_id
            metrics.ownership_lookups_total.labels(source="durable").inc()
            return record.parent_account_id

        found = await self.verify(tenant_id, failed=failed)
        return found.parent_account_id if found else None

    async def verify(self, tenant_id: str, *, failed: set[str] | None = None) -> Ownership | None:
        """Ask the platform which parent owns *tenant_id*, bypassing caches.

        Each parent credential only sees its own tenants, so 401/403/404 and
        transient failures move on to the next credential.  A hit is written
        through to the memo and the durable table.
        """
        try:
            parents = await self._credentials.list_by_kind(CredentialKind.PARENT)
        except Exception:
            logger.exception("ownership_cache.list_parents_failed tenant_id=%s", tenant_id)
            return None

        for credential in parents:
            if failed is not None and credential.subject_id in failed:
                continue
            usable = await self._refresher.ensure_fresh(credential)
            if usable is None:
                if failed is not None:
                    failed.add(credential.subject_id)
                continue

            try:
                location = await self._crm.get_location(tenant_id, usable.access_token)
            except (CrmNotFound, CrmUnauthorized):
                logger.debug(
                    "ownership_cache.not_visible tenant_id=%s parent_subject=%s", tenant_id, usable.subject_id
                )
                continue
            except CrmApiError as exc:
                logger.warning(
                    "ownership_cache.api_failed tenant_id=%s parent_subject=%s error=%s",
                    tenant_id,
                    usable.subject_id,
                    exc,
                )
                continue

            parent_account_id = location.get("companyId") or usable.parent_account_id
            if not parent_account_id:
                continue

            self._memo[tenant_id] = parent_account_id
            try:
                record = await self._ownership.record(tenant_id, parent_account_id, location.get("name"))
            except Exception:
                logger.exception("ownership_cache.durable_write_failed tenant_id=%s", tenant_id)
                record = Ownership(
                    tenant_id=tenant_id,
                    parent_account_id=parent_account_id,
                    display_name=location.get("name"),
                    active=True,
                    first_seen_at=None,
                    last_seen_at=None,
                )
            metrics.ownership_lookups_total.labels(source="api").inc()
            logger.info("ownership_cache.resolved tenant_id=%s parent_account_id=%s", tenant_id, parent_account_id)
            return record

        metrics.ownership_lookups_total.labels(source="miss").inc()
        logger.debug("ownership_cache.miss tenant_id=%s parents_tried=%d", tenant_id, len(parents))
        return None


__all__ = ["TenantOwnershipCache"]
