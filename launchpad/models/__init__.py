"""Database models package."""

from launchpad.models.enums import CredentialKind
from launchpad.models.enums import OnboardingField
from launchpad.models.models import OAuthCredential
from launchpad.models.models import OnboardingStatus
from launchpad.models.models import TenantOwnership
from launchpad.models.models import WebhookEvent

__all__ = [
    "CredentialKind",
    "OnboardingField",
    "OAuthCredential",
    "OnboardingStatus",
    "TenantOwnership",
    "WebhookEvent",
]
