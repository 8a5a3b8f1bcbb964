"""Per-tenant onboarding status: durable flags plus derived visibility.

Rows are created lazily (``ensure``) with every flag false.  Toggles and
conditional sets are single UPDATE statements so concurrent writers never
lose an update.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable
from typing import Mapping

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from sqlalchemy.orm import Session
from sqlalchemy.orm import sessionmaker

from launchpad.crud import crud
from launchpad.database import run_in_session
from launchpad.exceptions import OnboardingStatusNotFound
from launchpad.models.enums import OnboardingField
from launchpad.utils.time import as_utc

logger = logging.getLogger(__name__)


class OnboardingSnapshot(BaseModel):
    """Full status object sent to viewers; always a complete replacement."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    tenant_id: str = Field(alias="locationId")
    domain_connected: bool = Field(alias="domainConnected")
    course_created: bool = Field(alias="courseCreated")
    payment_integrated: bool = Field(alias="paymentIntegrated")
    dismissed: bool
    all_tasks_completed: bool = Field(alias="allTasksCompleted")
    should_show_widget: bool = Field(alias="shouldShowWidget")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    def flag(self, field: OnboardingField) -> bool:
        return getattr(self, field.column)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def _snapshot(row) -> OnboardingSnapshot:
    flags = {field: bool(getattr(row, field.column)) for field in OnboardingField}
    dismissed = flags[OnboardingField.DISMISSED]
    return OnboardingSnapshot(
        tenant_id=row.tenant_id,
        domain_connected=flags[OnboardingField.DOMAIN_CONNECTED],
        course_created=flags[OnboardingField.COURSE_CREATED],
        payment_integrated=flags[OnboardingField.PAYMENT_INTEGRATED],
        dismissed=dismissed,
        all_tasks_completed=all(value for field, value in flags.items() if field.is_milestone),
        # Stays visible through completion; only an explicit dismissal hides it.
        should_show_widget=not dismissed,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _read(db: Session, tenant_id: str) -> OnboardingSnapshot:
    row = crud.get_onboarding_status(db, tenant_id)
    if row is None:
        raise OnboardingStatusNotFound(tenant_id)
    return _snapshot(row)


def parse_patch(fields: Mapping[str, bool] | Iterable[tuple[str, bool]]) -> dict[OnboardingField, bool]:
    """Validate a sparse patch, rejecting unknown names before any write."""
    items = fields.items() if isinstance(fields, Mapping) else fields
    return {OnboardingField.parse(name): bool(value) for name, value in items}


class OnboardingStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def ensure(self, tenant_id: str) -> bool:
        created = await run_in_session(self._session_factory, crud.ensure_onboarding_status, tenant_id)
        if created:
            logger.info("onboarding_store.created tenant_id=%s", tenant_id)
        return created

    async def get(self, tenant_id: str) -> OnboardingSnapshot:
        """Ensure-then-read.

        Raises :class:`OnboardingStatusNotFound` only when a concurrent reset
        deleted the row in between; callers may retry.
        """
        await self.ensure(tenant_id)
        return await run_in_session(self._session_factory, _read, tenant_id)

    async def update(self, tenant_id: str, fields: Mapping[OnboardingField | str, bool]) -> OnboardingSnapshot:
        """Sparse patch: only the fields present in *fields* are written."""
        patch = parse_patch(fields)
        await self.ensure(tenant_id)

        def _work(db: Session) -> OnboardingSnapshot:
            crud.patch_onboarding_status(db, tenant_id, {f.column: v for f, v in patch.items()})
            return _read(db, tenant_id)

        snapshot = await run_in_session(self._session_factory, _work)
        logger.debug(
            "onboarding_store.update tenant_id=%s fields=%s",
            tenant_id,
            ",".join(f.value for f in patch),
        )
        return snapshot

    async def toggle(self, tenant_id: str, field: OnboardingField | str) -> OnboardingSnapshot:
        target = OnboardingField.parse(field)
        await self.ensure(tenant_id)

        def _work(db: Session) -> OnboardingSnapshot:
            crud.toggle_onboarding_field(db, tenant_id, target.column)
            return _read(db, tenant_id)

        return await run_in_session(self._session_factory, _work)

    async def set_if_changed(self, tenant_id: str, field: OnboardingField | str, value: bool) -> bool:
        """Compare-and-set one flag; True when the stored value changed."""
        target = OnboardingField.parse(field)
        await self.ensure(tenant_id)
        return await run_in_session(
            self._session_factory, crud.set_onboarding_field_if_changed, tenant_id, target.column, value
        )

    async def reset(self, tenant_id: str) -> OnboardingSnapshot:
        """Put every flag back to false (explicit tenant reset)."""
        return await self.update(tenant_id, {field: False for field in OnboardingField})

    async def delete(self, tenant_id: str) -> bool:
        return await run_in_session(self._session_factory, crud.delete_onboarding_status, tenant_id)


__all__ = ["OnboardingSnapshot", "OnboardingStore", "parse_patch"]
