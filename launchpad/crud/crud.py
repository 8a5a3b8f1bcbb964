"""Synchronous CRUD helpers over the SQLAlchemy session.

Every function takes an open :class:`~sqlalchemy.orm.Session` as its first
argument and is called from worker threads via
:func:`launchpad.database.run_in_session`.
"""

from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from sqlalchemy import func
from sqlalchemy import not_
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from launchpad.models.enums import CredentialKind
from launchpad.models.models import OAuthCredential
from launchpad.models.models import OnboardingStatus
from launchpad.models.models import TenantOwnership
from launchpad.models.models import WebhookEvent
from launchpad.utils.time import utc_now

# ---------------------------------------------------------------------------
# OAuth credentials
# ---------------------------------------------------------------------------


def get_credential(db: Session, subject_id: str) -> Optional[OAuthCredential]:
    return db.query(OAuthCredential).filter(OAuthCredential.subject_id == subject_id).first()


def upsert_credential(
    db: Session,
    *,
    subject_id: str,
    kind: CredentialKind,
    encrypted_access_token: str,
    encrypted_refresh_token: Optional[str],
    expires_at: Optional[datetime],
    scope: Optional[str],
    parent_account_id: Optional[str] = None,
) -> OAuthCredential:
    """Insert or update the single credential row for *subject_id*.

    ``parent_account_id`` is only overwritten when a value is supplied so a
    refresh never erases known ownership.
    """
    row = get_credential(db, subject_id)
    if row is None:
        row = OAuthCredential(subject_id=subject_id)
        db.add(row)

    row.kind = kind
    row.encrypted_access_token = encrypted_access_token
    row.encrypted_refresh_token = encrypted_refresh_token
    row.expires_at = expires_at
    row.scope = scope
    if parent_account_id is not None:
        row.parent_account_id = parent_account_id
    row.updated_at = utc_now()

    try:
        db.commit()
    except IntegrityError:
        # Lost an insert race; the other writer's row wins and we update it.
        db.rollback()
        return upsert_credential(
            db,
            subject_id=subject_id,
            kind=kind,
            encrypted_access_token=encrypted_access_token,
            encrypted_refresh_token=encrypted_refresh_token,
            expires_at=expires_at,
            scope=scope,
            parent_account_id=parent_account_id,
        )
    db.refresh(row)
    return row


def delete_credential(db: Session, subject_id: str) -> bool:
    deleted = db.query(OAuthCredential).filter(OAuthCredential.subject_id == subject_id).delete()
    db.commit()
    return bool(deleted)


def get_first_credential_by_kind(
    db: Session, kind: CredentialKind, *, parent_account_id: Optional[str] = None
) -> Optional[OAuthCredential]:
    query = db.query(OAuthCredential).filter(OAuthCredential.kind == kind)
    if parent_account_id is not None:
        query = query.filter(OAuthCredential.parent_account_id == parent_account_id)
    return query.order_by(OAuthCredential.id).first()


def list_credentials_by_kind(db: Session, kind: CredentialKind) -> List[OAuthCredential]:
    return db.query(OAuthCredential).filter(OAuthCredential.kind == kind).order_by(OAuthCredential.id).all()


# ---------------------------------------------------------------------------
# Tenant ownership
# ---------------------------------------------------------------------------


def get_ownership(db: Session, tenant_id: str) -> Optional[TenantOwnership]:
    return db.query(TenantOwnership).filter(TenantOwnership.tenant_id == tenant_id).first()


def upsert_ownership(
    db: Session,
    tenant_id: str,
    parent_account_id: str,
    *,
    display_name: Optional[str] = None,
) -> TenantOwnership:
    now = utc_now()
    row = get_ownership(db, tenant_id)
    if row is None:
        row = TenantOwnership(tenant_id=tenant_id, first_seen_at=now)
        db.add(row)

    row.parent_account_id = parent_account_id
    if display_name:
        row.display_name = display_name
    row.active = True
    row.last_seen_at = now

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return upsert_ownership(db, tenant_id, parent_account_id, display_name=display_name)
    db.refresh(row)
    return row


def list_ownership_for_parent(
    db: Session, parent_account_id: str, *, active_only: bool = True
) -> List[TenantOwnership]:
    query = db.query(TenantOwnership).filter(TenantOwnership.parent_account_id == parent_account_id)
    if active_only:
        query = query.filter(TenantOwnership.active.is_(True))
    return query.order_by(TenantOwnership.last_seen_at.desc()).all()


def deactivate_ownership(db: Session, tenant_id: str) -> bool:
    result = db.execute(
        update(TenantOwnership)
        .where(TenantOwnership.tenant_id == tenant_id)
        .values(active=False)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0


def ownership_stats(db: Session, parent_account_id: str) -> Dict[str, int]:
    rows = (
        db.query(TenantOwnership.active, func.count(TenantOwnership.tenant_id))
        .filter(TenantOwnership.parent_account_id == parent_account_id)
        .group_by(TenantOwnership.active)
        .all()
    )
    counts = {bool(active): count for active, count in rows}
    active = counts.get(True, 0)
    inactive = counts.get(False, 0)
    return {"total": active + inactive, "active": active, "inactive": inactive}


# ---------------------------------------------------------------------------
# Onboarding status
# ---------------------------------------------------------------------------


def get_onboarding_status(db: Session, tenant_id: str) -> Optional[OnboardingStatus]:
    return db.query(OnboardingStatus).filter(OnboardingStatus.tenant_id == tenant_id).first()


def ensure_onboarding_status(db: Session, tenant_id: str) -> bool:
    """Create the all-false row for *tenant_id* if missing.

    Returns True when this call created the row.  A concurrent creator
    winning the insert is not an error.
    """
    if get_onboarding_status(db, tenant_id) is not None:
        return False

    db.add(
        OnboardingStatus(
            tenant_id=tenant_id,
            domain_connected=False,
            course_created=False,
            payment_integrated=False,
            dismissed=False,
        )
    )
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True


def patch_onboarding_status(db: Session, tenant_id: str, values: Dict[str, bool]) -> int:
    """Apply a sparse column→value patch; returns the affected row count."""
    if not values:
        return 0
    result = db.execute(
        update(OnboardingStatus)
        .where(OnboardingStatus.tenant_id == tenant_id)
        .values(**values, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


def toggle_onboarding_field(db: Session, tenant_id: str, column: str) -> int:
    """Flip *column* in a single ``UPDATE ... SET col = NOT col`` statement."""
    target = getattr(OnboardingStatus, column)
    result = db.execute(
        update(OnboardingStatus)
        .where(OnboardingStatus.tenant_id == tenant_id)
        .values({target: not_(target), OnboardingStatus.updated_at: utc_now()})
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


def set_onboarding_field_if_changed(db: Session, tenant_id: str, column: str, value: bool) -> bool:
    """Write *value* only when it differs from the stored one.

    The ``WHERE col != value`` guard makes the compare-and-set a single
    statement; True means the row actually changed.
    """
    target = getattr(OnboardingStatus, column)
    result = db.execute(
        update(OnboardingStatus)
        .where(OnboardingStatus.tenant_id == tenant_id, target != value)
        .values({target: value, OnboardingStatus.updated_at: utc_now()})
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount > 0


def delete_onboarding_status(db: Session, tenant_id: str) -> bool:
    deleted = db.query(OnboardingStatus).filter(OnboardingStatus.tenant_id == tenant_id).delete()
    db.commit()
    return bool(deleted)


# ---------------------------------------------------------------------------
# Webhook audit log
# ---------------------------------------------------------------------------


def create_webhook_event(
    db: Session, *, tenant_id: Optional[str], event_type: Optional[str], payload: Dict[str, Any]
) -> WebhookEvent:
    row = WebhookEvent(tenant_id=tenant_id, event_type=event_type, payload=payload)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_webhook_events(db: Session, tenant_id: str, *, limit: int = 50) -> List[WebhookEvent]:
    return (
        db.query(WebhookEvent)
        .filter(WebhookEvent.tenant_id == tenant_id)
        .order_by(WebhookEvent.id.desc())
        .limit(limit)
        .all()
    )
