"""Inbound CRM webhook classification and status transitions.

Rules are an ordered list of ``(pattern, action)`` pairs matched against the
event type.  Every matching rule runs; a single event may touch several
flags.  ``handle`` never raises so the platform always gets its ack.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Awaitable
from typing import Callable

from launchpad import metrics
from launchpad.crud import crud
from launchpad.database import run_in_session
from launchpad.models.enums import OnboardingField
from launchpad.services import analytics
from launchpad.services.analytics import UserpilotTracker
from launchpad.services.onboarding_store import OnboardingStore
from launchpad.services.status_broker import StatusSyncBroker

logger = logging.getLogger(__name__)

DOMAIN_PATTERN = re.compile(r"Location.*Domain|Domain.*Update|CustomDomain", re.IGNORECASE)
PAYMENT_PATTERN = re.compile(r"ExternalAuthConnected", re.IGNORECASE)
PRODUCT_PATTERN = re.compile(r"(Product|Course)(Create|Update)", re.IGNORECASE)
LOCATION_UPDATE_PATTERN = re.compile(r"^Location(Update|Create)$", re.IGNORECASE)


def _text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int)) and str(value).strip():
        return str(value).strip()
    return None


def extract_event_type(payload: dict[str, Any]) -> str:
    return str(payload.get("event") or payload.get("type") or "").strip()


def extract_tenant_id(event_type: str, payload: dict[str, Any]) -> str | None:
    """Find the tenant id, honouring event-specific precedence.

    Tenant-record events carry the tenant as their own ``id``; everything
    else is tried field by field with ``id`` as the last resort.
    """
    if LOCATION_UPDATE_PATTERN.search(event_type):
        own = _text(payload.get("id"))
        if own:
            return own

    account = payload.get("account")
    location = payload.get("location")
    candidates = (
        payload.get("locationId"),
        payload.get("location_id"),
        account.get("locationId") if isinstance(account, dict) else None,
        location.get("id") if isinstance(location, dict) else location,
        payload.get("id"),
    )
    for candidate in candidates:
        value = _text(candidate)
        if value:
            return value
    return None


def extract_domain(payload: dict[str, Any]) -> str | None:
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    for candidate in (data.get("domain"), data.get("customDomain"), payload.get("domain"), payload.get("customDomain")):
        value = _text(candidate)
        if value:
            return value
    return None


@dataclass
class WebhookOutcome:
    event_type: str
    tenant_id: str | None = None
    matched: list[str] = field(default_factory=list)
    changed: dict[OnboardingField, bool] = field(default_factory=dict)
    delivered: int = 0
    error: bool = False

    @property
    def routed(self) -> bool:
        return self.tenant_id is not None


Action = Callable[[str, dict[str, Any]], Awaitable[dict[OnboardingField, bool]]]


class WebhookEventRouter:
    def __init__(
        self,
        store: OnboardingStore,
        broker: StatusSyncBroker,
        tracker: UserpilotTracker,
        session_factory,
    ):
        self._store = store
        self._broker = broker
        self._tracker = tracker
        self._session_factory = session_factory
        self._rules: list[tuple[str, re.Pattern, Action]] = [
            ("domain", DOMAIN_PATTERN, self._on_domain),
            ("payment", PAYMENT_PATTERN, self._on_payment),
            ("product", PRODUCT_PATTERN, self._on_product),
            ("location_update", LOCATION_UPDATE_PATTERN, self._on_location_update),
        ]

    async def handle(self, payload: Any) -> WebhookOutcome:
        """Route one raw webhook body.  Never raises."""
        if not isinstance(payload, dict):
            payload = {}
        outcome = WebhookOutcome(event_type=extract_event_type(payload))
        try:
            await self._handle(payload, outcome)
        except Exception:
            outcome.error = True
            metrics.webhook_events_total.labels(outcome="error").inc()
            logger.exception(
                "webhook_router.failed event_type=%s tenant_id=%s", outcome.event_type or "NONE", outcome.tenant_id
            )
        return outcome

    async def _handle(self, payload: dict[str, Any], outcome: WebhookOutcome) -> None:
        event_type = outcome.event_type
        tenant_id = extract_tenant_id(event_type, payload)
        outcome.tenant_id = tenant_id

        await run_in_session(
            self._session_factory,
            crud.create_webhook_event,
            tenant_id=tenant_id,
            event_type=event_type or "unknown",
            payload=payload,
        )

        if tenant_id is None:
            metrics.webhook_events_total.labels(outcome="unroutable").inc()
            logger.info(
                "webhook_router.drop event_type=%s reason=no_tenant_id keys=%s", event_type or "NONE", sorted(payload)
            )
            return

        for name, pattern, action in self._rules:
            if not pattern.search(event_type):
                continue
            outcome.matched.append(name)
            outcome.changed.update(await action(tenant_id, payload))

        if not outcome.matched:
            metrics.webhook_events_total.labels(outcome="unmatched").inc()
            logger.info("webhook_router.unmatched event_type=%s tenant_id=%s", event_type or "NONE", tenant_id)
            return

        if not outcome.changed:
            metrics.webhook_events_total.labels(outcome="noop").inc()
            logger.debug(
                "webhook_router.noop event_type=%s tenant_id=%s rules=%s", event_type, tenant_id, outcome.matched
            )
            return

        metrics.webhook_events_total.labels(outcome="changed").inc()
        logger.info(
            "webhook_router.changed event_type=%s tenant_id=%s fields=%s",
            event_type,
            tenant_id,
            {f.value: v for f, v in outcome.changed.items()},
        )
        # Tracked first: the change is committed even if the fan-out fails.
        for changed_field, value in outcome.changed.items():
            event_name = transition_event(changed_field, value)
            if event_name:
                self._tracker.track(tenant_id, event_name, {"source": "webhook", "eventType": event_type})
        outcome.delivered = await self._broker.broadcast(tenant_id)

    # ------------------------------------------------------------------
    # Rule actions; each returns the flags it actually changed
    # ------------------------------------------------------------------

    async def _on_domain(self, tenant_id: str, payload: dict[str, Any]) -> dict[OnboardingField, bool]:
        # Removal is honoured: an empty domain clears the flag.
        has_domain = extract_domain(payload) is not None
        return await self._set(tenant_id, OnboardingField.DOMAIN_CONNECTED, has_domain)

    async def _on_payment(self, tenant_id: str, payload: dict[str, Any]) -> dict[OnboardingField, bool]:
        return await self._set(tenant_id, OnboardingField.PAYMENT_INTEGRATED, True)

    async def _on_product(self, tenant_id: str, payload: dict[str, Any]) -> dict[OnboardingField, bool]:
        # Monotonic: deletions look the same as creations here, so never unset.
        return await self._set(tenant_id, OnboardingField.COURSE_CREATED, True)

    async def _on_location_update(self, tenant_id: str, payload: dict[str, Any]) -> dict[OnboardingField, bool]:
        # Too coarse to say anything about milestones.
        return {}

    async def _set(self, tenant_id: str, target: OnboardingField, value: bool) -> dict[OnboardingField, bool]:
        changed = await self._store.set_if_changed(tenant_id, target, value)
        return {target: value} if changed else {}


def transition_event(target: OnboardingField, value: bool) -> str | None:
    """Analytics event name for a flag transition, if one is tracked."""
    if target is OnboardingField.DOMAIN_CONNECTED:
        return analytics.DOMAIN_CONNECTED if value else analytics.DOMAIN_REMOVED
    if target is OnboardingField.PAYMENT_INTEGRATED:
        return analytics.PAYMENT_INTEGRATED if value else analytics.PAYMENT_REMOVED
    if target is OnboardingField.COURSE_CREATED:
        return analytics.COURSE_CREATED if value else None
    if target is OnboardingField.DISMISSED:
        return analytics.ONBOARDING_DISMISSED if value else None
    return None


__all__ = [
    "WebhookEventRouter",
    "WebhookOutcome",
    "extract_domain",
    "extract_event_type",
    "extract_tenant_id",
    "transition_event",
]
