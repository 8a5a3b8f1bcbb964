"""Process-wide service container.

Everything stateful (memo tables, in-flight refreshes, subscriber sets,
HTTP clients) is built once here and handed to routers through
``app.state.services``; nothing lives in module globals.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from dataclasses import field
from datetime import timedelta

import httpx
from sqlalchemy.orm import sessionmaker

from launchpad.auth.credentials import CredentialRefresher
from launchpad.auth.ownership import TenantOwnershipCache
from launchpad.auth.resolver import TokenResolver
from launchpad.config import Settings
from launchpad.crm.client import CrmClient
from launchpad.services.analytics import UserpilotTracker
from launchpad.services.credential_store import CredentialStore
from launchpad.services.credential_store import OwnershipStore
from launchpad.services.installation import InstallationService
from launchpad.services.milestone_checks import MilestoneChecker
from launchpad.services.onboarding_store import OnboardingStore
from launchpad.services.status_broker import StatusSyncBroker
from launchpad.services.webhook_router import WebhookEventRouter

logger = logging.getLogger(__name__)


class OAuthStateStore:
    """Single-use CSRF state tokens for the install flow."""

    def __init__(self, ttl_seconds: float = 600.0):
        self._ttl = ttl_seconds
        self._states: dict[str, float] = {}

    def issue(self) -> str:
        self._purge()
        state = secrets.token_urlsafe(32)
        self._states[state] = time.monotonic() + self._ttl
        return state

    def consume(self, state: str) -> bool:
        expires = self._states.pop(state, None)
        return expires is not None and expires >= time.monotonic()

    def _purge(self) -> None:
        now = time.monotonic()
        for key in [k for k, exp in self._states.items() if exp < now]:
            del self._states[key]


@dataclass
class Services:
    settings: Settings
    session_factory: sessionmaker
    crm: CrmClient
    credentials: CredentialStore
    ownership_store: OwnershipStore
    refresher: CredentialRefresher
    ownership: TenantOwnershipCache
    resolver: TokenResolver
    onboarding: OnboardingStore
    broker: StatusSyncBroker
    tracker: UserpilotTracker
    webhooks: WebhookEventRouter
    milestones: MilestoneChecker
    installation: InstallationService
    oauth_states: OAuthStateStore = field(default_factory=OAuthStateStore)

    async def aclose(self) -> None:
        await self.broker.close()
        await self.tracker.aclose()
        await self.crm.aclose()
        logger.info("services.closed")


def build_services(
    settings: Settings,
    session_factory: sessionmaker,
    *,
    crm_transport: httpx.AsyncBaseTransport | None = None,
    analytics_transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Wire every component; transports let tests stub outbound HTTP."""
    crm = CrmClient(settings, transport=crm_transport)
    credentials = CredentialStore(session_factory)
    ownership_store = OwnershipStore(session_factory)
    refresher = CredentialRefresher(
        credentials, crm, expiry_buffer=timedelta(seconds=settings.token_expiry_buffer_seconds)
    )
    ownership = TenantOwnershipCache(ownership_store, credentials, refresher, crm, memo={})
    resolver = TokenResolver(credentials, refresher, ownership)
    onboarding = OnboardingStore(session_factory)
    broker = StatusSyncBroker(onboarding, keepalive_seconds=settings.sse_keepalive_seconds)
    tracker = UserpilotTracker(settings, transport=analytics_transport)

    return Services(
        settings=settings,
        session_factory=session_factory,
        crm=crm,
        credentials=credentials,
        ownership_store=ownership_store,
        refresher=refresher,
        ownership=ownership,
        resolver=resolver,
        onboarding=onboarding,
        broker=broker,
        tracker=tracker,
        webhooks=WebhookEventRouter(onboarding, broker, tracker, session_factory),
        milestones=MilestoneChecker(resolver, crm, onboarding, broker, tracker),
        installation=InstallationService(resolver, credentials, onboarding, ownership),
    )


__all__ = ["OAuthStateStore", "Services", "build_services"]
