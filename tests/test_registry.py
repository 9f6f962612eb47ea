"""Tests for the lifecycle bus and the per-client roll registry."""

from app.domain.registry import LifecycleEvent, LifecycleKind, MessageLifecycleBus, RollRegistry


async def test_bus_delivers_to_every_listener_despite_failures():
    bus = MessageLifecycleBus()
    seen = []

    async def broken(event):
        raise RuntimeError("boom")

    async def listener(event):
        seen.append(event.message_id)

    bus.subscribe(LifecycleKind.UPDATE, broken)
    bus.subscribe(LifecycleKind.UPDATE, listener)
    await bus.emit(LifecycleEvent(LifecycleKind.UPDATE, room_id="world", message_id="m1"))
    await bus.emit(LifecycleEvent(LifecycleKind.CREATE, room_id="world", message_id="m2"))
    assert seen == ["m1"]


async def test_unsubscribe_stops_delivery():
    bus = MessageLifecycleBus()
    seen = []

    async def listener(event):
        seen.append(event)

    sub = bus.subscribe(LifecycleKind.DELETE, listener)
    sub.unsubscribe()
    sub.unsubscribe()
    await bus.emit(LifecycleEvent(LifecycleKind.DELETE, room_id="world", message_id="m1"))
    assert seen == []
    assert bus.listener_count(LifecycleKind.DELETE) == 0


def test_in_flight_actions_are_exclusive_per_message():
    registry = RollRegistry()
    assert registry.begin_action("m1")
    assert not registry.begin_action("m1")
    assert registry.begin_action("m2")
    registry.end_action("m1")
    assert registry.begin_action("m1")


async def test_release_tears_down_everything():
    bus = MessageLifecycleBus()
    registry = RollRegistry()

    async def watcher(event):
        pass

    registry.track_processed("m1")
    registry.bind("m1", object())
    registry.add_watcher("m1", bus.subscribe(LifecycleKind.ACTOR_UPDATE, watcher))
    registry.begin_action("m1")

    registry.release("m1")

    assert not registry.has_processed("m1")
    assert registry.bound("m1") is None
    assert registry.watcher_count() == 0
    assert bus.listener_count(LifecycleKind.ACTOR_UPDATE) == 0
    assert registry.begin_action("m1")
