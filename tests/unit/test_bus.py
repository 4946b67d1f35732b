import asyncio

import pytest

from vutber.core.bus import EventBus
from vutber.core.contracts import ConversationEvent, HelpEvent


@pytest.mark.asyncio
async def test_publish_reaches_every_subscriber_in_order() -> None:
    bus = EventBus(queue_size=8)
    first = bus.subscribe()
    second = bus.subscribe()

    events = [ConversationEvent(response=f"r{i}") for i in range(3)]
    for event in events:
        assert bus.publish(event) == 2

    for subscriber in (first, second):
        received = [await asyncio.wait_for(subscriber.get(), timeout=0.2) for _ in events]
        assert [e.event_id for e in received] == [e.event_id for e in events]


@pytest.mark.asyncio
async def test_subscriber_only_sees_events_after_registration() -> None:
    bus = EventBus(queue_size=4)
    bus.publish(HelpEvent(message="before"))
    subscriber = bus.subscribe()
    bus.publish(HelpEvent(message="after"))
    bus.close()

    received = [event async for event in subscriber]

    assert [e.message for e in received] == ["after"]


@pytest.mark.asyncio
async def test_slow_subscriber_is_disconnected_without_affecting_others() -> None:
    bus = EventBus(queue_size=2)
    slow = bus.subscribe()
    fast = bus.subscribe()

    delivered: list[int] = []
    for i in range(3):
        delivered.append(bus.publish(ConversationEvent(response=str(i))))
        await asyncio.wait_for(fast.get(), timeout=0.2)

    assert delivered == [2, 2, 1]
    assert slow.closed
    assert bus.subscriber_count() == 1
    stats = bus.stats()
    assert stats.dropped_subscribers_total == 1
    assert stats.published_total == 3
    assert stats.delivered_total == 5

    # The slow reader gets its buffered tail and then the end of stream.
    remaining = []
    while (event := await asyncio.wait_for(slow.get(), timeout=0.2)) is not None:
        remaining.append(event)
    assert [e.response for e in remaining] == ["0", "1"]


@pytest.mark.asyncio
async def test_close_wakes_pending_readers() -> None:
    bus = EventBus()
    subscriber = bus.subscribe()
    reader = asyncio.create_task(subscriber.get())
    await asyncio.sleep(0)

    bus.close()

    assert await asyncio.wait_for(reader, timeout=0.2) is None
    assert bus.subscriber_count() == 0
    assert bus.subscribe().closed


@pytest.mark.asyncio
async def test_leaving_iteration_unsubscribes() -> None:
    bus = EventBus()
    subscriber = bus.subscribe()
    bus.publish(HelpEvent(message="one"))
    bus.publish(HelpEvent(message="two"))

    iterator = aiter(subscriber)
    first = await anext(iterator)
    await iterator.aclose()

    assert first.message == "one"
    assert bus.subscriber_count() == 0
    assert subscriber.closed


def test_publish_without_subscribers_counts_event() -> None:
    bus = EventBus()
    assert bus.publish(HelpEvent(message="nobody")) == 0
    assert bus.stats().published_total == 1


def test_queue_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        EventBus(queue_size=0)


@pytest.mark.asyncio
async def test_dropped_subscriber_keeps_full_buffered_tail() -> None:
    bus = EventBus(queue_size=2)
    idle = bus.subscribe()

    for i in range(3):
        bus.publish(ConversationEvent(response=str(i)))

    assert idle.closed
    received = [event async for event in idle]
    assert [e.response for e in received] == ["0", "1"]
    assert await idle.get() is None
