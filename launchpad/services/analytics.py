"""Fire-and-forget analytics events to Userpilot.

``track`` never blocks and never raises: the POST runs as a background task
whose failures are logged and counted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from launchpad import metrics
from launchpad.config import Settings

logger = logging.getLogger(__name__)

# Event names emitted on milestone transitions.
DOMAIN_CONNECTED = "domain_connected"
DOMAIN_REMOVED = "domain_removed"
COURSE_CREATED = "course_created"
PAYMENT_INTEGRATED = "payment_integrated"
PAYMENT_REMOVED = "payment_removed"
ONBOARDING_DISMISSED = "onboarding_dismissed"


class UserpilotTracker:
    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._api_key = settings.userpilot_key
        self._url = f"{settings.userpilot_api_base}/v1/track/event"
        self._http = httpx.AsyncClient(timeout=settings.http_timeout_seconds, transport=transport)
        self._tasks: set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def track(self, subject_id: str, event_name: str, properties: dict[str, Any] | None = None) -> None:
        if not self.enabled:
            logger.debug("analytics.skip event=%s subject_id=%s reason=no_api_key", event_name, subject_id)
            return

        task = asyncio.create_task(self._send(subject_id, event_name, properties or {}), name=f"track:{event_name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, subject_id: str, event_name: str, properties: dict[str, Any]) -> None:
        body = {
            "user": {"id": subject_id, "attributes": {"identifierType": "locationId"}},
            "event": {"name": event_name, "properties": properties},
        }
        try:
            response = await self._http.post(
                self._url,
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            metrics.analytics_events_total.labels(outcome="error").inc()
            logger.warning("analytics.failed event=%s subject_id=%s error=%s", event_name, subject_id, exc)
            return
        metrics.analytics_events_total.labels(outcome="sent").inc()
        logger.debug("analytics.sent event=%s subject_id=%s", event_name, subject_id)

    async def drain(self) -> None:
        """Wait for in-flight events (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._http.aclose()


__all__ = [
    "UserpilotTracker",
    "DOMAIN_CONNECTED",
    "DOMAIN_REMOVED",
    "COURSE_CREATED",
    "PAYMENT_INTEGRATED",
    "PAYMENT_REMOVED",
    "ONBOARDING_DISMISSED",
]
