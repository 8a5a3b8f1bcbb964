"""Server-Sent Events stream of live onboarding status."""

import logging

from fastapi import APIRouter
from fastapi import Depends
from sse_starlette.sse import EventSourceResponse

from launchpad.core.services import Services
from launchpad.dependencies import get_services
from launchpad.dependencies import tenant_id_path
from launchpad.services.status_broker import SSE_SEPARATOR
from launchpad.services.status_broker import QueueChannel

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["events"])

# Transport-level comment pings only; viewer-visible ``event: ping`` frames
# come from the broker at ``SSE_KEEPALIVE_SECONDS``.
TRANSPORT_PING_SECONDS = 300


async def _status_event_generator(services: Services, tenant_id: str):
    """Yield frames for one viewer until it disconnects or is pruned."""
    channel = QueueChannel()
    await services.broker.subscribe(tenant_id, channel)
    try:
        async for event in channel:
            yield event
    finally:
        # Client went away (generator cancelled) or broker pruned us.
        services.broker.unsubscribe(tenant_id, channel)
        logger.info("events.stream_closed tenant_id=%s", tenant_id)


@router.get("/{tenant_id}")
async def status_events(
    tenant_id: str = Depends(tenant_id_path),
    services: Services = Depends(get_services),
) -> EventSourceResponse:
    """Live status stream.

    Event types:
    - message: full status snapshot (sent on connect and after every change)
    - ping: keep-alive ``{"ts": <epoch-ms>}``
    """
    return EventSourceResponse(
        _status_event_generator(services, tenant_id),
        sep=SSE_SEPARATOR,
        ping=TRANSPORT_PING_SECONDS,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
