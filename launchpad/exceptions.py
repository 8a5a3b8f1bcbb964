"""Domain exceptions shared across services and routers."""

from __future__ import annotations


class LaunchpadError(Exception):
    """Base class for every error raised by the launchpad core."""


class InvalidOnboardingField(LaunchpadError, ValueError):
    """Raised when a caller names a field outside the closed milestone set."""

    def __init__(self, name: str):
        super().__init__(f"Invalid onboarding field: {name!r}")
        self.name = name


class OnboardingStatusNotFound(LaunchpadError):
    """The status row vanished between ``ensure`` and the read.

    Only possible when a concurrent reset races a read; callers retry.
    """

    def __init__(self, tenant_id: str):
        super().__init__(f"Onboarding status for tenant {tenant_id!r} disappeared during read")
        self.tenant_id = tenant_id


class CrmApiError(LaunchpadError):
    """Non-success response (or transport failure) from the CRM platform."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class CrmUnauthorized(CrmApiError):
    """401: the bearer credential is invalid or expired."""


class CrmNotFound(CrmApiError):
    """403/404: subject unknown or not visible to this credential."""


class CrmUnavailable(CrmApiError):
    """Timeout, transport failure or 5xx."""


__all__ = [
    "LaunchpadError",
    "InvalidOnboardingField",
    "OnboardingStatusNotFound",
    "CrmApiError",
    "CrmUnauthorized",
    "CrmNotFound",
    "CrmUnavailable",
]
