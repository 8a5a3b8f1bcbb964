"""Shared *Enum* definitions for SQLAlchemy & Pydantic models.

The Enums inherit from ``str`` so JSON serialisation renders plain strings
and equality against raw literals (``kind == "parent"``) keeps working.
"""

from __future__ import annotations

from enum import Enum

from launchpad.exceptions import InvalidOnboardingField


class CredentialKind(str, Enum):
    TENANT = "tenant"
    PARENT = "parent"


class OnboardingField(str, Enum):
    """Closed set of per-tenant flags that callers may patch or toggle.

    Values are the wire names; :attr:`column` maps to the storage column.
    """

    DOMAIN_CONNECTED = "domainConnected"
    COURSE_CREATED = "courseCreated"
    PAYMENT_INTEGRATED = "paymentIntegrated"
    DISMISSED = "dismissed"

    @property
    def column(self) -> str:
        if self is OnboardingField.DOMAIN_CONNECTED:
            return "domain_connected"
        if self is OnboardingField.COURSE_CREATED:
            return "course_created"
        if self is OnboardingField.PAYMENT_INTEGRATED:
            return "payment_integrated"
        if self is OnboardingField.DISMISSED:
            return "dismissed"
        raise AssertionError(f"unhandled field {self!r}")  # pragma: no cover

    @property
    def is_milestone(self) -> bool:
        return self is not OnboardingField.DISMISSED

    @classmethod
    def parse(cls, name: "str | OnboardingField") -> "OnboardingField":
        """Return the member for *name* or raise :class:`InvalidOnboardingField`.

        Accepts the camelCase wire name or the snake_case column name.
        """
        if isinstance(name, cls):
            return name
        for member in cls:
            if name == member.value or name == member.column:
                return member
        raise InvalidOnboardingField(str(name))


__all__ = [
    "CredentialKind",
    "OnboardingField",
]
