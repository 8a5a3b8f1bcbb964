"""Tests for the live status broker and its SSE frames."""

import asyncio
import json

import pytest

from launchpad.services.status_broker import QueueChannel
from launchpad.services.status_broker import StatusSyncBroker
from launchpad.services.status_broker import message_event
from launchpad.services.status_broker import ping_event


class RecordingChannel:
    def __init__(self, fail: bool = False):
        self.frames = []
        self.fail = fail
        self.closed = False

    async def send(self, event):
        if self.fail:
            raise ConnectionResetError("viewer went away")
        self.frames.append(event.encode().decode())

    def close(self):
        self.closed = True

    def payloads(self, kind="message"):
        out = []
        for frame in self.frames:
            lines = frame.strip("\n").split("\n")
            if lines[0] == f"event: {kind}":
                out.append(json.loads(lines[1].removeprefix("data: ")))
        return out


def test_message_frame_format(services):
    from launchpad.services.onboarding_store import OnboardingSnapshot

    snapshot = OnboardingSnapshot(
        tenant_id="T1",
        domain_connected=True,
        course_created=False,
        payment_integrated=False,
        dismissed=False,
        all_tasks_completed=False,
        should_show_widget=True,
    )
    frame = message_event(snapshot).encode().decode()

    assert frame.startswith("event: message\ndata: {")
    assert frame.endswith("}\n\n")
    assert json.loads(frame.split("\n")[1].removeprefix("data: "))["domainConnected"] is True


def test_ping_frame_format():
    assert ping_event(1700000000000).encode().decode() == 'event: ping\ndata: {"ts": 1700000000000}\n\n'


@pytest.mark.asyncio
async def test_subscribe_sends_snapshot_immediately(services):
    channel = RecordingChannel()

    await services.broker.subscribe("T2", channel)

    expected = (await services.onboarding.get("T2")).to_wire()
    assert channel.payloads() == [expected]
    assert services.broker.subscriber_count("T2") == 1


@pytest.mark.asyncio
async def test_broadcast_reaches_every_subscriber(services):
    first, second = RecordingChannel(), RecordingChannel()
    await services.broker.subscribe("T3", first)
    await services.broker.subscribe("T3", second)

    await services.onboarding.update("T3", {"courseCreated": True})
    delivered = await services.broker.broadcast("T3")

    assert delivered == 2
    assert first.payloads()[-1]["courseCreated"] is True
    assert second.payloads()[-1]["courseCreated"] is True


@pytest.mark.asyncio
async def test_failed_writes_are_pruned_not_retried(services):
    healthy, broken = RecordingChannel(), RecordingChannel()
    await services.broker.subscribe("T4", healthy)
    await services.broker.subscribe("T4", broken)
    broken.fail = True

    assert await services.broker.broadcast("T4") == 1
    assert broken.closed
    assert services.broker.subscriber_count("T4") == 1

    assert await services.broker.broadcast("T4") == 1


@pytest.mark.asyncio
async def test_last_unsubscribe_drops_tenant_set(services):
    channel = RecordingChannel()
    await services.broker.subscribe("T5", channel)

    assert services.broker.unsubscribe("T5", channel)
    assert services.broker.subscriber_count() == 0
    assert not services.broker.unsubscribe("T5", channel)
    assert await services.broker.broadcast("T5") == 0


@pytest.mark.asyncio
async def test_keepalive_pings_and_prunes_on_failure(services):
    broker = StatusSyncBroker(services.onboarding, keepalive_seconds=0.01)
    channel = RecordingChannel()
    await broker.subscribe("T6", channel)

    await asyncio.sleep(0.05)
    pings = channel.payloads("ping")
    assert pings and all(isinstance(p["ts"], int) for p in pings)

    channel.fail = True
    await asyncio.sleep(0.05)
    assert broker.subscriber_count("T6") == 0
    assert channel.closed
    await broker.close()


@pytest.mark.asyncio
async def test_queue_channel_streams_until_closed(services):
    channel = QueueChannel()
    await services.broker.subscribe("T7", channel)
    await services.broker.broadcast("T7")
    services.broker.unsubscribe("T7", channel)

    frames = [event async for event in channel]

    assert len(frames) == 2
    assert all(frame.event == "message" for frame in frames)
    assert channel.closed


@pytest.mark.asyncio
async def test_full_queue_counts_as_dead_viewer(services):
    channel = QueueChannel(maxsize=1)
    await services.broker.subscribe("T8", channel)

    # Nobody drains the queue, so the next write overflows and prunes.
    assert await services.broker.broadcast("T8") == 0
    assert services.broker.subscriber_count("T8") == 0
