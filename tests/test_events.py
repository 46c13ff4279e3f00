import asyncio
import logging

from giveaway_engine.events import (
    EventBus,
    EventKind,
    GiveawayEnded,
    GiveawayStarted,
)
from giveaway_engine.models import GiveawayRecord


def make_record():
    return GiveawayRecord(
        id="g1", channel_id="100", prize="Nitro", winner_count=1, end_at=10, created_at=0
    )


def test_handlers_receive_events_of_their_kind_only():
    bus = EventBus()
    started, ended = [], []
    bus.subscribe(EventKind.STARTED, started.append)
    bus.subscribe(EventKind.ENDED, ended.append)

    event = GiveawayStarted(make_record())
    bus.publish(event)

    assert started == [event]
    assert ended == []


def test_failing_handler_does_not_block_others(caplog):
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(EventKind.ENDED, broken)
    bus.subscribe(EventKind.ENDED, received.append)

    with caplog.at_level(logging.ERROR, logger="giveaway_engine.events"):
        bus.publish(GiveawayEnded(make_record(), ("1",)))

    assert len(received) == 1
    assert received[0].winners == ("1",)
    assert "boom" in caplog.text


def test_unsubscribe_stops_delivery():
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe(EventKind.STARTED, received.append)
    unsubscribe()
    unsubscribe()
    bus.publish(GiveawayStarted(make_record()))
    assert received == []


def test_late_subscriber_does_not_see_earlier_events():
    bus = EventBus()
    bus.publish(GiveawayStarted(make_record()))
    received = []
    bus.subscribe(EventKind.STARTED, received.append)
    assert received == []


async def test_async_handlers_are_scheduled():
    bus = EventBus()
    done = asyncio.Event()

    async def handler(event):
        done.set()

    bus.subscribe(EventKind.STARTED, handler)
    bus.publish(GiveawayStarted(make_record()))
    await asyncio.wait_for(done.wait(), timeout=1)


def test_async_handler_without_loop_is_dropped():
    bus = EventBus()
    called = []

    async def handler(event):
        called.append(event)

    bus.subscribe(EventKind.STARTED, handler)
    bus.publish(GiveawayStarted(make_record()))
    assert called == []
