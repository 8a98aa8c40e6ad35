import uuid

import pytest

from src.db.models.enums import ResourceKind
from src.services.events import DomainEvent, DomainEventType, EventBus, publish_committed
from src.services.usage import UsageLedger
from tests.factories import API_PREFIX, build_auth_header, fetch_subscription, seed_organization


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
    bus = EventBus()
    received = []

    def broken(_event):
        raise RuntimeError("boom")

    async def recorder(event):
        received.append(event)

    bus.subscribe(DomainEventType.LIMIT_REACHED, broken)
    handler_id = bus.subscribe(DomainEventType.LIMIT_REACHED, recorder)

    await bus.emit(DomainEventType.LIMIT_REACHED, uuid.uuid4(), kind="subject")
    assert len(received) == 1

    assert bus.unsubscribe(DomainEventType.LIMIT_REACHED, handler_id) is True
    await bus.emit(DomainEventType.LIMIT_REACHED, uuid.uuid4(), kind="subject")
    assert len(received) == 1


@pytest.mark.asyncio
async def test_stream_receives_only_its_organization():
    bus = EventBus()
    org_id, other_id = uuid.uuid4(), uuid.uuid4()

    async with bus.stream(org_id) as queue:
        assert bus.listener_count(org_id) == 1
        await bus.emit(DomainEventType.USAGE_CHANGED, other_id, current_subjects=1)
        await bus.emit(DomainEventType.USAGE_CHANGED, org_id, current_subjects=2)

        event = queue.get_nowait()
        assert event.data == {"current_subjects": 2}
        assert queue.empty()

    assert bus.listener_count(org_id) == 0


@pytest.mark.asyncio
async def test_slow_stream_drops_oldest_events():
    bus = EventBus(stream_queue_size=2)
    org_id = uuid.uuid4()

    async with bus.stream(org_id) as queue:
        for count in range(3):
            await bus.emit(DomainEventType.USAGE_CHANGED, org_id, current_students=count)

        assert [queue.get_nowait().data["current_students"] for _ in range(2)] == [1, 2]


def test_sse_frame_format():
    event = DomainEvent(type=DomainEventType.NEAR_LIMIT, org_id=uuid.uuid4(), data={"percentage": 80})
    frame = event.to_sse()

    assert frame.startswith(f"id: {event.id}\nevent: near-limit\ndata: ")
    assert frame.endswith("\n\n")
    assert '"percentage": 80' in frame


@pytest.mark.asyncio
async def test_rolled_back_usage_change_is_never_streamed(test_db, session_factory):
    subscription = await seed_organization(test_db, subjects=2)
    events = EventBus()

    async with events.stream(subscription.org_id) as queue:
        await UsageLedger(test_db, events).increment(
            subscription.org_id, "admin-1", ResourceKind.SUBJECT
        )
        await test_db.rollback()
        await test_db.commit()
        assert await publish_committed(test_db) == 0
        assert queue.empty()

    stored = await fetch_subscription(session_factory, subscription.org_id)
    assert stored.current_subjects == 2


@pytest.mark.asyncio
async def test_committed_usage_change_is_streamed_once(test_db):
    subscription = await seed_organization(test_db, subjects=2)
    events = EventBus()

    async with events.stream(subscription.org_id) as queue:
        await UsageLedger(test_db, events).increment(
            subscription.org_id, "admin-1", ResourceKind.SUBJECT
        )
        assert queue.empty()
        await test_db.commit()
        await publish_committed(test_db)
        await publish_committed(test_db)

        event = queue.get_nowait()
        assert queue.empty()

    assert event.type == DomainEventType.USAGE_CHANGED
    assert event.data["current_subjects"] == 3


@pytest.mark.asyncio
async def test_failed_request_streams_nothing(client, test_app, test_db):
    subscription = await seed_organization(test_db, subjects=3)
    events = test_app.state.events

    async with events.stream(subscription.org_id) as queue:
        response = await client.post(
            f"{API_PREFIX}/organizations/{subscription.org_id}/usage/subject/register",
            headers=_auth(subscription),
        )
        assert response.status_code == 402
        assert [event.type for event in _drain(queue)] == [DomainEventType.LIMIT_REACHED]

        response = await client.post(
            f"{API_PREFIX}/organizations/{subscription.org_id}/usage/subject/release",
            headers=_auth(subscription),
        )
        assert response.status_code == 200
        assert [event.type for event in _drain(queue)] == [DomainEventType.USAGE_CHANGED]


def _auth(subscription):
    return build_auth_header("admin-1", subscription.org_id)


def _drain(queue):
    drained = []
    while not queue.empty():
        drained.append(queue.get_nowait())
    return drained
