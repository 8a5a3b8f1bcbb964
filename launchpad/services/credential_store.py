"""Async facades over the credential and tenant-ownership tables.

Rows are copied into frozen snapshots (with tokens decrypted) before the
session closes, so callers never touch live ORM objects across ``await``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import sessionmaker

from launchpad.crud import crud
from launchpad.database import run_in_session
from launchpad.models.enums import CredentialKind
from launchpad.utils.crypto import decrypt
from launchpad.utils.crypto import encrypt
from launchpad.utils.time import as_utc

logger = logging.getLogger(__name__)

PARENT_SUBJECT_PREFIX = "agency:"


def parent_subject_id(parent_account_id: str) -> str:
    """Synthetic subject id under which a parent account's credential lives."""
    return f"{PARENT_SUBJECT_PREFIX}{parent_account_id}"


@dataclass(frozen=True)
class Credential:
    subject_id: str
    kind: CredentialKind
    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    scope: str | None
    parent_account_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Ownership:
    tenant_id: str
    parent_account_id: str
    display_name: str | None
    active: bool
    first_seen_at: datetime | None
    last_seen_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenantId": self.tenant_id,
            "parentAccountId": self.parent_account_id,
            "displayName": self.display_name,
            "active": self.active,
            "firstSeenAt": self.first_seen_at.isoformat() if self.first_seen_at else None,
            "lastSeenAt": self.last_seen_at.isoformat() if self.last_seen_at else None,
        }


def _to_credential(row) -> Credential | None:
    if row is None:
        return None
    return Credential(
        subject_id=row.subject_id,
        kind=CredentialKind(row.kind),
        access_token=decrypt(row.encrypted_access_token),
        refresh_token=decrypt(row.encrypted_refresh_token) if row.encrypted_refresh_token else None,
        expires_at=as_utc(row.expires_at),
        scope=row.scope,
        parent_account_id=row.parent_account_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _to_ownership(row) -> Ownership | None:
    if row is None:
        return None
    return Ownership(
        tenant_id=row.tenant_id,
        parent_account_id=row.parent_account_id,
        display_name=row.display_name,
        active=bool(row.active),
        first_seen_at=as_utc(row.first_seen_at),
        last_seen_at=as_utc(row.last_seen_at),
    )


class CredentialStore:
    """Durable per-subject credential table (one row per ``subject_id``)."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def get_by_subject_id(self, subject_id: str) -> Credential | None:
        def _read(db):
            return _to_credential(crud.get_credential(db, subject_id))

        return await run_in_session(self._session_factory, _read)

    async def upsert(self, credential: Credential) -> Credential:
        def _write(db):
            row = crud.upsert_credential(
                db,
                subject_id=credential.subject_id,
                kind=credential.kind,
                encrypted_access_token=encrypt(credential.access_token),
                encrypted_refresh_token=encrypt(credential.refresh_token) if credential.refresh_token else None,
                expires_at=credential.expires_at,
                scope=credential.scope,
                parent_account_id=credential.parent_account_id,
            )
            return _to_credential(row)

        stored = await run_in_session(self._session_factory, _write)
        logger.debug("credential_store.upsert subject_id=%s kind=%s", stored.subject_id, stored.kind.value)
        return stored

    async def delete_by_subject_id(self, subject_id: str) -> bool:
        deleted = await run_in_session(self._session_factory, crud.delete_credential, subject_id)
        if deleted:
            logger.info("credential_store.delete subject_id=%s", subject_id)
        return deleted

    async def find_first_by_kind(
        self, kind: CredentialKind, *, parent_account_id: str | None = None
    ) -> Credential | None:
        def _read(db):
            row = crud.get_first_credential_by_kind(db, kind, parent_account_id=parent_account_id)
            return _to_credential(row)

        return await run_in_session(self._session_factory, _read)

    async def list_by_kind(self, kind: CredentialKind) -> list[Credential]:
        def _read(db):
            return [_to_credential(row) for row in crud.list_credentials_by_kind(db, kind)]

        return await run_in_session(self._session_factory, _read)


class OwnershipStore:
    """Durable tenant → parent-account mapping (secondary to the memo)."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def get(self, tenant_id: str) -> Ownership | None:
        def _read(db):
            return _to_ownership(crud.get_ownership(db, tenant_id))

        return await run_in_session(self._session_factory, _read)

    async def record(self, tenant_id: str, parent_account_id: str, display_name: str | None = None) -> Ownership:
        def _write(db):
            row = crud.upsert_ownership(db, tenant_id, parent_account_id, display_name=display_name)
            return _to_ownership(row)

        return await run_in_session(self._session_factory, _write)

    async def list_for_parent(self, parent_account_id: str, *, active_only: bool = True) -> list[Ownership]:
        def _read(db):
            rows = crud.list_ownership_for_parent(db, parent_account_id, active_only=active_only)
            return [_to_ownership(row) for row in rows]

        return await run_in_session(self._session_factory, _read)

    async def deactivate(self, tenant_id: str) -> bool:
        return await run_in_session(self._session_factory, crud.deactivate_ownership, tenant_id)

    async def stats(self, parent_account_id: str) -> dict[str, int]:
        return await run_in_session(self._session_factory, crud.ownership_stats, parent_account_id)


__all__ = [
    "Credential",
    "CredentialStore",
    "Ownership",
    "OwnershipStore",
    "parent_subject_id",
]
