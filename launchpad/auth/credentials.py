"""Credential expiry and refresh.

Refreshes are single-flight per ``subject_id``: concurrent callers that all
observe the same expired credential await one shared refresh task instead
of each spending the refresh token.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from datetime import timedelta

from launchpad import metrics
from launchpad.crm.client import CrmClient
from launchpad.exceptions import CrmApiError
from launchpad.services.credential_store import Credential
from launchpad.services.credential_store import CredentialStore
from launchpad.utils.time import utc_now

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_BUFFER = timedelta(minutes=5)


def is_expired(
    credential: Credential,
    *,
    now: datetime | None = None,
    buffer: timedelta = DEFAULT_EXPIRY_BUFFER,
) -> bool:
    """Return True once *credential* is within *buffer* of its expiry.

    A credential without ``expires_at`` never expires.
    """
    if credential.expires_at is None:
        return False
    return (now or utc_now()) >= credential.expires_at - buffer


class CredentialRefresher:
    """Exchanges refresh tokens and persists the new pair."""

    def __init__(
        self,
        store: CredentialStore,
        crm: CrmClient,
        *,
        expiry_buffer: timedelta = DEFAULT_EXPIRY_BUFFER,
    ):
        self._store = store
        self._crm = crm
        self._buffer = expiry_buffer
        self._inflight: dict[str, asyncio.Task] = {}

    def is_expired(self, credential: Credential) -> bool:
        return is_expired(credential, buffer=self._buffer)

    async def ensure_fresh(self, credential: Credential) -> Credential | None:
        """Return *credential* if still valid, else the refreshed one or None."""
        if not self.is_expired(credential):
            return credential
        return await self.refresh(credential)

    async def refresh(self, credential: Credential) -> Credential | None:
        """Refresh *credential*, joining an in-flight refresh for the same subject.

        Never raises; every failure is logged and reported as ``None``.
        """
        subject_id = credential.subject_id
        task = self._inflight.get(subject_id)
        if task is None:
            task = asyncio.create_task(self._refresh_once(subject_id), name=f"refresh:{subject_id}")
            self._inflight[subject_id] = task
            task.add_done_callback(lambda t, s=subject_id: self._drop_inflight(s, t))
        else:
            logger.debug("credential_refresher.join subject_id=%s", subject_id)

        # A cancelled waiter must not cancel the refresh other callers share.
        return await asyncio.shield(task)

    def _drop_inflight(self, subject_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(subject_id) is task:
            del self._inflight[subject_id]

    async def _refresh_once(self, subject_id: str) -> Credential | None:
        try:
            # Re-read: a refresh that finished just before we started may
            # already have stored a fresh pair.
            current = await self._store.get_by_subject_id(subject_id)
            if current is None:
                logger.info("credential_refresher.skip subject_id=%s reason=missing", subject_id)
                return None
            if not self.is_expired(current):
                return current
            return await self._exchange(current)
        except Exception:
            metrics.token_refresh_total.labels(outcome="error").inc()
            logger.exception("credential_refresher.failed subject_id=%s", subject_id)
            return None

    async def _exchange(self, credential: Credential) -> Credential | None:
        subject_id = credential.subject_id
        if not self._crm.has_client_credentials:
            metrics.token_refresh_total.labels(outcome="no_client_credentials").inc()
            logger.warning("credential_refresher.skip subject_id=%s reason=missing_client_credentials", subject_id)
            return None
        if not credential.refresh_token:
            metrics.token_refresh_total.labels(outcome="no_refresh_token").inc()
            logger.warning("credential_refresher.skip subject_id=%s reason=missing_refresh_token", subject_id)
            return None

        try:
            grant = await self._crm.refresh(credential.refresh_token)
        except CrmApiError as exc:
            metrics.token_refresh_total.labels(outcome="rejected").inc()
            logger.warning(
                "credential_refresher.rejected subject_id=%s status=%s error=%s",
                subject_id,
                exc.status_code,
                exc,
            )
            return None

        refreshed = replace(
            credential,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or credential.refresh_token,
            expires_at=grant.expires_at,
            scope=grant.scope or credential.scope,
        )
        stored = await self._store.upsert(refreshed)
        metrics.token_refresh_total.labels(outcome="success").inc()
        logger.info(
            "credential_refresher.refreshed subject_id=%s kind=%s expires_at=%s",
            subject_id,
            stored.kind.value,
            stored.expires_at.isoformat() if stored.expires_at else None,
        )
        return stored


__all__ = ["CredentialRefresher", "is_expired", "DEFAULT_EXPIRY_BUFFER"]
