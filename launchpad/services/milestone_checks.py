"""Live milestone checks against the CRM API.

Each check answers ``True``/``False`` when the platform gave a definite
answer and ``None`` when it could not be asked (no token, timeout, 5xx).
Unknown answers never overwrite stored flags.
"""

from __future__ import annotations

import logging
from typing import Any

from launchpad.auth.resolver import TokenResolver
from launchpad.crm.client import CrmClient
from launchpad.exceptions import CrmApiError
from launchpad.models.enums import OnboardingField
from launchpad.services.analytics import UserpilotTracker
from launchpad.services.onboarding_store import OnboardingSnapshot
from launchpad.services.onboarding_store import OnboardingStore
from launchpad.services.status_broker import StatusSyncBroker
from launchpad.services.webhook_router import transition_event

logger = logging.getLogger(__name__)

PAYMENT_FIELDS = (
    "paymentIntegration",
    "paymentProviders",
    "paymentProvider",
    "paymentGateway",
    "merchantAccount",
    "manualPaymentMethods",
    "customPaymentMethods",
    "manualPayment",
    "cashOnDelivery",
    "customPayment",
    "manualPaymentEnabled",
    "stripeAccountId",
    "stripeConnected",
    "stripe",
    "paypalAccountId",
    "paypalConnected",
    "paypal",
    "authorizeNetAccountId",
    "authorizeNetConnected",
    "nmiAccountId",
    "nmiConnected",
    "squareAccountId",
    "squareConnected",
    "square",
    "merchantId",
    "gatewayId",
    "processorId",
)


def domain_from_location(location: dict[str, Any]) -> str | None:
    nested = location.get("location") if isinstance(location.get("location"), dict) else {}
    for candidate in (
        nested.get("customDomain"),
        nested.get("domain"),
        location.get("customDomain"),
        location.get("domain"),
    ):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return None


def payment_from_location(location: dict[str, Any]) -> bool:
    found = [name for name in PAYMENT_FIELDS if location.get(name)]
    settings = location.get("settings")
    if isinstance(settings, dict) and settings.get("payments"):
        found.append("settings.payments")
    if found:
        logger.debug("milestone_checks.payment_fields fields=%s", found)
    return bool(found)


class MilestoneChecker:
    def __init__(
        self,
        resolver: TokenResolver,
        crm: CrmClient,
        store: OnboardingStore,
        broker: StatusSyncBroker,
        tracker: UserpilotTracker,
    ):
        self._resolver = resolver
        self._crm = crm
        self._store = store
        self._broker = broker
        self._tracker = tracker

    async def _location(self, tenant_id: str) -> dict[str, Any] | None:
        token = await self._resolver.resolve(tenant_id)
        if token is None:
            logger.debug("milestone_checks.skip tenant_id=%s reason=no_token", tenant_id)
            return None
        try:
            return await self._crm.get_location(tenant_id, token)
        except CrmApiError as exc:
            logger.warning("milestone_checks.location_failed tenant_id=%s error=%s", tenant_id, exc)
            return None

    async def check_domain(self, tenant_id: str) -> bool | None:
        location = await self._location(tenant_id)
        return None if location is None else domain_from_location(location) is not None

    async def check_products(self, tenant_id: str) -> bool | None:
        token = await self._resolver.resolve(tenant_id)
        if token is None:
            return None
        try:
            return await self._crm.has_products(tenant_id, token)
        except CrmApiError as exc:
            logger.warning("milestone_checks.products_failed tenant_id=%s error=%s", tenant_id, exc)
            return None

    async def refresh_status(self, tenant_id: str) -> OnboardingSnapshot:
        """Reconcile domain and payment flags with the platform, then read.

        One location fetch answers both checks.  A transient failure leaves
        the stored snapshot untouched.
        """
        location = await self._location(tenant_id)
        observed: dict[OnboardingField, bool] = {}
        if location is not None:
            observed[OnboardingField.DOMAIN_CONNECTED] = domain_from_location(location) is not None
            observed[OnboardingField.PAYMENT_INTEGRATED] = payment_from_location(location)
        await self._apply(tenant_id, observed)
        return await self._store.get(tenant_id)

    async def refresh_products(self, tenant_id: str) -> OnboardingSnapshot:
        """Mark the course milestone once products exist; never unsets it."""
        has_products = await self.check_products(tenant_id)
        if has_products:
            await self._apply(tenant_id, {OnboardingField.COURSE_CREATED: True})
        return await self._store.get(tenant_id)

    async def _apply(self, tenant_id: str, observed: dict[OnboardingField, bool]) -> dict[OnboardingField, bool]:
        changed: dict[OnboardingField, bool] = {}
        for target, value in observed.items():
            if await self._store.set_if_changed(tenant_id, target, value):
                changed[target] = value

        if changed:
            logger.info(
                "milestone_checks.changed tenant_id=%s fields=%s",
                tenant_id,
                {f.value: v for f, v in changed.items()},
            )
            for target, value in changed.items():
                event_name = transition_event(target, value)
                if event_name:
                    self._tracker.track(tenant_id, event_name, {"source": "api_check"})
            await self._broker.broadcast(tenant_id)
        return changed


__all__ = [
    "MilestoneChecker",
    "PAYMENT_FIELDS",
    "domain_from_location",
    "payment_from_location",
]
