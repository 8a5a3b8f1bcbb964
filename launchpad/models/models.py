# SQLAlchemy core imports
from sqlalchemy import JSON
from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import Text
from sqlalchemy.sql import func

# Local helpers / enums
from launchpad.database import Base
from launchpad.models.enums import CredentialKind

# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class OAuthCredential(Base):
    """Encrypted CRM OAuth credential for a tenant or a parent account.

    Parent-level rows use the synthetic subject id ``agency:{parentAccountId}``.
    Tokens are Fernet-encrypted; see :mod:`launchpad.utils.crypto`.
    """

    __tablename__ = "oauth_credentials"

    id = Column(Integer, primary_key=True, index=True)

    # At most one credential per subject.
    subject_id = Column(String, unique=True, nullable=False, index=True)
    parent_account_id = Column(String, nullable=True, index=True)

    kind = Column(
        SAEnum(CredentialKind, native_enum=False, name="credential_kind_enum"),
        nullable=False,
        default=CredentialKind.TENANT.value,
    )

    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)
    # NULL means non-expiring.
    expires_at = Column(DateTime(timezone=True), nullable=True)
    scope = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Tenant → parent account mapping
# ---------------------------------------------------------------------------


class TenantOwnership(Base):
    """Durable record of which parent account owns a tenant."""

    __tablename__ = "tenant_ownership"

    tenant_id = Column(String, primary_key=True)
    parent_account_id = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    first_seen_at = Column(DateTime(timezone=True), server_default=func.now())
    last_seen_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------------------------------------------------------------------
# Onboarding progress
# ---------------------------------------------------------------------------


class OnboardingStatus(Base):
    """Per-tenant milestone flags plus the viewer's dismissal flag.

    ``allTasksCompleted`` and ``shouldShowWidget`` are derived on read and are
    never stored.
    """

    __tablename__ = "onboarding_status"

    tenant_id = Column(String, primary_key=True)
    domain_connected = Column(Boolean, nullable=False, default=False)
    course_created = Column(Boolean, nullable=False, default=False)
    payment_integrated = Column(Boolean, nullable=False, default=False)
    dismissed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class WebhookEvent(Base):
    """Audit log of every inbound platform webhook, understood or not."""

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=True, index=True)
    event_type = Column(String, nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    received_at = Column(DateTime(timezone=True), server_default=func.now())
