#!/usr/bin/env python3
"""
Test suite for the cross-process bridge, using the in-memory transport.
Run with: pytest test_bridge.py  (or python test_bridge.py)
"""
import asyncio
import json

import pytest

from overlaybus.bridge import (
    BridgeState,
    EventBridge,
    MemoryTransport,
    TransportError,
    WebSocketTransport,
    attach,
    BRIDGE_CONNECTED_EVENT,
    BRIDGE_DISCONNECTED_EVENT,
)
from overlaybus.events import EventBus, HANDLER_ERROR_EVENT
from overlaybus.models.schemas import Event, OriginTag


async def wait_until(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


async def connected_pair(filter_a=None, buffer_size: int = 256):
    """Two buses bridged over a memory transport pair, both connected."""
    bus_a, bus_b = EventBus(), EventBus()
    transport_a, transport_b = MemoryTransport.pair("A", "B")
    bridge_a = attach(bus_a, transport_a, process_label="A", filter=filter_a,
                      reconnect_delay=0.01, buffer_size=buffer_size)
    bridge_b = attach(bus_b, transport_b, process_label="B", reconnect_delay=0.01)
    bridge_a.start()
    bridge_b.start()
    assert await bridge_a.wait_connected(timeout=2)
    assert await bridge_b.wait_connected(timeout=2)
    return bus_a, bus_b, bridge_a, bridge_b


def test_bridged_publish_is_delivered_once_on_each_side():
    """Publishing on A reaches A and B exactly once and never comes back to A."""
    print("\n🌉 Testing bridge no-echo")
    print("-" * 70)

    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair()
        seen_a, seen_b = [], []
        bus_a.subscribe("sync", seen_a.append, with_event=True)
        bus_b.subscribe("sync", seen_b.append, with_event=True)

        bus_a.publish("sync", {"v": 1})

        await wait_until(lambda: seen_b)
        await asyncio.sleep(0.05)

        await bridge_a.disable()
        await bridge_b.disable()
        return seen_a, seen_b, bridge_a, bridge_b

    seen_a, seen_b, bridge_a, bridge_b = asyncio.run(scenario())

    assert len(seen_a) == 1
    assert seen_a[0].origin_tag == OriginTag.LOCAL
    assert len(seen_b) == 1
    assert seen_b[0].payload == {"v": 1}
    assert seen_b[0].origin_tag == OriginTag.REMOTE
    assert seen_b[0].process_label == "A"
    assert bridge_a.stats["received"] == 0
    assert bridge_b.stats["sent"] == 0
    print("✓ No-echo test PASSED")


def test_bridge_works_in_both_directions():
    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair()
        seen_a, seen_b = [], []
        bus_a.subscribe("overlay:moved", seen_a.append)
        bus_b.subscribe("overlay:moved", seen_b.append)

        bus_a.publish("overlay:moved", {"x": 1})
        bus_b.publish("overlay:moved", {"x": 2})

        await wait_until(lambda: len(seen_a) == 2 and len(seen_b) == 2)
        await asyncio.sleep(0.05)

        await bridge_a.disable()
        await bridge_b.disable()
        return seen_a, seen_b

    seen_a, seen_b = asyncio.run(scenario())
    assert seen_a == [{"x": 1}, {"x": 2}]
    assert seen_b == [{"x": 2}, {"x": 1}]


def test_messages_keep_publish_order():
    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair()
        received = []
        bus_b.subscribe("tick", received.append)

        for n in range(50):
            bus_a.publish("tick", n)

        await wait_until(lambda: len(received) == 50)
        await bridge_a.disable()
        await bridge_b.disable()
        return received

    assert asyncio.run(scenario()) == list(range(50))


def test_events_published_by_handlers_follow_their_cause():
    """A handler publishing a follow-up event must not overtake the event it handles."""
    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair()
        received = []
        bus_a.subscribe("resource:selected", lambda p: bus_a.publish("overlay:update", p))
        bus_b.subscribe("resource:selected", lambda p: received.append("resource:selected"))
        bus_b.subscribe("overlay:update", lambda p: received.append("overlay:update"))

        bus_a.publish("resource:selected", {"id": "logo.svg"})

        await wait_until(lambda: len(received) == 2)
        await bridge_a.disable()
        await bridge_b.disable()
        return received

    assert asyncio.run(scenario()) == ["resource:selected", "overlay:update"]


def test_filter_keeps_events_local():
    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair(
            filter_a=lambda name: not name.startswith("local:"))
        seen_b = []
        bus_b.subscribe("local:cursor", seen_b.append)
        bus_b.subscribe("shared", seen_b.append)

        bus_a.publish("local:cursor", 1)
        bus_a.publish("shared", 2)

        await wait_until(lambda: seen_b)
        await asyncio.sleep(0.05)
        await bridge_a.disable()
        await bridge_b.disable()
        return seen_b

    assert asyncio.run(scenario()) == [2]


def test_internal_events_are_not_forwarded():
    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair()
        seen_b = []
        for name in (HANDLER_ERROR_EVENT, BRIDGE_CONNECTED_EVENT, "after"):
            bus_b.subscribe(name, lambda p, name=name: seen_b.append(name))

        def broken(payload):
            raise RuntimeError("boom")

        bus_a.subscribe("work", broken)
        bus_a.publish("work", None)
        bus_a.publish("after", None)

        await wait_until(lambda: "after" in seen_b)
        await asyncio.sleep(0.05)
        await bridge_a.disable()
        await bridge_b.disable()
        return seen_b

    assert asyncio.run(scenario()) == ["after"]


def test_buffer_drops_oldest_when_full():
    """Events published while disconnected are buffered up to the limit."""
    print("\n📦 Testing bounded outbound buffer")
    print("-" * 70)

    async def scenario():
        bus_a, bus_b = EventBus(), EventBus()
        transport_a, transport_b = MemoryTransport.pair("A", "B")
        bridge_a = attach(bus_a, transport_a, process_label="A", reconnect_delay=0.01, buffer_size=2)
        bridge_b = attach(bus_b, transport_b, process_label="B", reconnect_delay=0.01)
        received = []
        bus_b.subscribe("tick", received.append)

        for n in range(3):
            bus_a.publish("tick", n)
        assert bridge_a.pending == 2
        assert bridge_a.stats["dropped"] == 1

        bridge_b.start()
        assert await bridge_b.wait_connected(timeout=2)
        bridge_a.start()

        await wait_until(lambda: len(received) == 2)
        await bridge_a.disable()
        await bridge_b.disable()
        return received

    assert asyncio.run(scenario()) == [1, 2]
    print("✓ Buffer test PASSED")


def test_reconnects_after_connection_loss():
    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair()
        disconnects = []
        received = []
        bus_b.subscribe(BRIDGE_DISCONNECTED_EVENT, disconnects.append)
        bus_b.subscribe("after", received.append)

        await bridge_b.transport.close()

        await wait_until(lambda: disconnects)
        await wait_until(lambda: bridge_a.stats["reconnects"] >= 1 and bridge_b.stats["reconnects"] >= 1)
        await wait_until(lambda: bridge_a.state == BridgeState.CONNECTED and bridge_b.state == BridgeState.CONNECTED)

        bus_a.publish("after", {"ok": True})
        await wait_until(lambda: received)

        await bridge_a.disable()
        await bridge_b.disable()
        return disconnects, received

    disconnects, received = asyncio.run(scenario())
    assert disconnects[0]["processLabel"] == "B"
    assert disconnects[0]["reason"]
    assert received == [{"ok": True}]


def test_retries_failed_connects():
    async def scenario():
        bus = EventBus()
        transport_a, transport_b = MemoryTransport.pair()
        transport_a.fail_connects = 2
        bridge = attach(bus, transport_a, process_label="A", reconnect_delay=0.01)
        bridge.start()
        connected = await bridge.wait_connected(timeout=2)
        await bridge.disable()
        return connected, transport_a

    connected, transport = asyncio.run(scenario())
    assert connected
    assert transport.connect_attempts == 3


def test_disable_stops_reconnecting():
    async def scenario():
        bus = EventBus()
        transport_a, _ = MemoryTransport.pair()
        transport_a.fail_connects = 1000
        bridge = attach(bus, transport_a, process_label="A", reconnect_delay=0.01)
        bridge.start()
        await wait_until(lambda: transport_a.connect_attempts >= 2)

        await bridge.disable()
        attempts = transport_a.connect_attempts
        await asyncio.sleep(0.05)

        local = []
        bus.subscribe("still:local", local.append)
        bus.publish("still:local", 1)
        return bridge, attempts, transport_a.connect_attempts, local

    bridge, before, after, local = asyncio.run(scenario())
    assert before == after
    assert bridge.state == BridgeState.DISCONNECTED
    assert not bridge.enabled
    assert local == [1]
    assert bridge.pending == 1


def test_malformed_inbound_messages_are_skipped():
    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair()
        received = []
        bus_a.subscribe("ok", received.append)

        await bridge_b.transport.send("not json")
        await bridge_b.transport.send(json.dumps({"eventName": "", "payload": 1}))
        await bridge_b.transport.send(Event(event_name="ok", payload=3).to_wire())

        await wait_until(lambda: received)
        await bridge_a.disable()
        await bridge_b.disable()
        return bridge_a, received

    bridge_a, received = asyncio.run(scenario())
    assert received == [3]
    assert bridge_a.stats["invalid"] == 2
    assert bridge_a.stats["received"] == 1


class ScriptedWebSocket:
    """Stands in for a websockets connection: yields frames, then stays open."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.sent = []

    async def recv(self):
        if self.frames:
            return self.frames.pop(0)
        await asyncio.Event().wait()

    async def send(self, message):
        self.sent.append(message)

    async def close(self):
        pass


class ScriptedWebSocketTransport(WebSocketTransport):
    def __init__(self, frames):
        super().__init__("ws://scripted/ws/bridge?label=A")
        self.frames = frames

    async def connect(self):
        self._websocket = ScriptedWebSocket(self.frames)


def test_undecodable_binary_frame_is_skipped_without_reconnect():
    async def scenario():
        bus = EventBus()
        received = []
        bus.subscribe("ok", received.append)
        transport = ScriptedWebSocketTransport([
            b"\xff\xfe",
            Event(event_name="ok", payload=1).to_wire().encode("utf-8"),
            Event(event_name="ok", payload=2).to_wire(),
        ])
        bridge = attach(bus, transport, process_label="A", reconnect_delay=0.01)
        bridge.start()

        await wait_until(lambda: len(received) == 2)
        await asyncio.sleep(0.05)
        state = bridge.state
        await bridge.disable()
        return bridge, received, state

    bridge, received, state = asyncio.run(scenario())
    assert received == [1, 2]
    assert state == BridgeState.CONNECTED
    assert bridge.stats["invalid"] == 1
    assert bridge.stats["received"] == 2
    assert bridge.stats["reconnects"] == 0


def test_unserializable_payload_stays_local():
    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair()
        local = []
        bus_a.subscribe("odd", local.append)

        marker = object()
        bus_a.publish("odd", marker)
        await asyncio.sleep(0.02)

        await bridge_a.disable()
        await bridge_b.disable()
        return bridge_a, local, marker

    bridge_a, local, marker = asyncio.run(scenario())
    assert local == [marker]
    assert bridge_a.stats["invalid"] == 1
    assert bridge_a.stats["sent"] == 0


def test_detach_stops_forwarding():
    async def scenario():
        bus_a, bus_b, bridge_a, bridge_b = await connected_pair()
        seen_b = []
        bus_b.subscribe("x", seen_b.append)

        bridge_a.detach()
        bus_a.publish("x", 1)
        await asyncio.sleep(0.05)

        await bridge_a.disable()
        await bridge_b.disable()
        return seen_b

    assert asyncio.run(scenario()) == []


def test_bridge_requires_label():
    with pytest.raises(ValueError):
        EventBridge(EventBus(), MemoryTransport(), process_label="")


def test_websocket_transport_reports_refused_connection():
    async def scenario():
        transport = WebSocketTransport("ws://127.0.0.1:9/ws/bridge?label=x", open_timeout=2)
        with pytest.raises(TransportError):
            await transport.connect()
        with pytest.raises(TransportError):
            await transport.send("{}")
        await transport.close()

    asyncio.run(scenario())


def test_wire_format_uses_camel_case():
    event = Event(event_name="sync", payload={"v": 1}, process_label="A", timestamp=1000.0)
    message = json.loads(event.to_wire())

    assert message == {
        "eventName": "sync",
        "payload": {"v": 1},
        "originTag": "local",
        "processLabel": "A",
        "timestamp": 1000.0,
    }
    assert Event.from_wire(event.to_wire()) == event


def run_all_tests():
    """Run all tests without pytest."""
    print("=" * 70)
    print(" Event Bridge - Test Suite".center(70))
    print("=" * 70)

    tests = [
        value for name, value in sorted(globals().items())
        if name.startswith("test_") and callable(value)
    ]
    try:
        for test in tests:
            test()

        print("\n" + "=" * 70)
        print(f"✅ ALL {len(tests)} TESTS PASSED!".center(70))
        print("=" * 70)
        print()

    except AssertionError as e:
        print(f"\n❌ Test failed: {e}")
        return 1
    except Exception as e:
        print(f"\n❌ Unexpected error: {e}")
        import traceback
        traceback.print_exc()
        return 1

    return 0


if __name__ == "__main__":
    import sys
    sys.exit(run_all_tests())
