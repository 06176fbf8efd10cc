import asyncio

import pytest

from dmengine.domain.common.events import Event, EventBus, EventKind


@pytest.mark.asyncio
async def test_subscriber_receives_matching_kinds():
    bus = EventBus(queue_size=8)
    sub = bus.subscribe([EventKind.MESSAGE_CREATED])
    bus.emit(EventKind.FOLLOW_CHANGED, "alice")
    bus.emit(EventKind.MESSAGE_CREATED, "dm:alice:bob", {"message_id": "m1"})
    event = await sub.get(timeout=1)
    assert event.kind is EventKind.MESSAGE_CREATED
    assert event.payload == {"message_id": "m1"}
    assert sub.pending() == 0


@pytest.mark.asyncio
async def test_audience_filter():
    bus = EventBus()
    alice = bus.subscribe(user_id="alice")
    carol = bus.subscribe(user_id="carol")
    bus.emit(EventKind.TYPING_CHANGED, "dm:alice:bob", audience=("alice",))
    assert alice.pending() == 1
    assert carol.pending() == 0


def test_publish_never_blocks_and_drops_when_full():
    bus = EventBus(queue_size=2)
    slow = bus.subscribe()
    fast = bus.subscribe(queue_size=10)
    delivered = [bus.publish(Event(EventKind.BLOCK_CHANGED, str(i))) for i in range(4)]
    assert delivered == [2, 2, 1, 1]
    assert slow.pending() == 2
    assert slow.dropped == 2
    assert fast.pending() == 4
    assert slow.get_nowait().subject_id == "0"


@pytest.mark.asyncio
async def test_close_unsubscribes():
    bus = EventBus()
    async with bus.subscribe() as sub:
        assert bus.subscriber_count() == 1
    assert sub.closed
    assert bus.subscriber_count() == 0
    assert bus.emit(EventKind.FOLLOW_CHANGED, "alice") is not None
    assert sub.pending() == 0
    sub.close()


@pytest.mark.asyncio
async def test_async_iteration_delivers_in_order():
    bus = EventBus()
    sub = bus.subscribe()
    for i in range(3):
        bus.emit(EventKind.CONVERSATION_CHANGED, f"c{i}")
    seen = []

    async def consume():
        async for event in sub:
            seen.append(event.subject_id)
            if len(seen) == 3:
                sub.close()

    await asyncio.wait_for(consume(), timeout=1)
    assert seen == ["c0", "c1", "c2"]


def test_event_concerns():
    broadcast = Event(EventKind.FOLLOW_CHANGED, "x")
    targeted = Event(EventKind.FOLLOW_CHANGED, "x", audience=frozenset({"bob"}))
    assert broadcast.concerns("anyone")
    assert targeted.concerns("bob")
    assert not targeted.concerns("alice")


def test_queue_size_must_be_positive():
    with pytest.raises(ValueError):
        EventBus(queue_size=0)


@pytest.mark.asyncio
async def test_close_from_another_task_ends_iteration():
    bus = EventBus()
    sub = bus.subscribe()
    received = []

    async def consume():
        async for event in sub:
            received.append(event.subject_id)

    consumer = asyncio.create_task(consume())
    bus.emit(EventKind.FOLLOW_CHANGED, "alice")
    await asyncio.sleep(0.01)
    sub.close()
    done, _ = await asyncio.wait({consumer}, timeout=1)
    assert consumer in done
    assert received == ["alice"]
    assert bus.subscriber_count() == 0


@pytest.mark.asyncio
async def test_events_queued_before_close_are_still_delivered():
    bus = EventBus()
    sub = bus.subscribe()
    bus.emit(EventKind.FOLLOW_CHANGED, "alice")
    bus.emit(EventKind.FOLLOW_CHANGED, "bob")
    sub.close()
    assert [event.subject_id async for event in sub] == ["alice", "bob"]
