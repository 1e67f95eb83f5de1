#!/usr/bin/env python3
"""
Demo script showing two bridged event buses in one process.
Uses the in-memory transport so no hub needs to be running.
"""

print("""
╔══════════════════════════════════════════════════════════════════════════╗
║                      Overlay Event Bus Demo                              ║
║                                                                          ║
║  Two buses stand in for the Electron main process and an overlay         ║
║  renderer. They are bridged over an in-memory transport pair.            ║
╚══════════════════════════════════════════════════════════════════════════╝
""")

import asyncio
import logging

from overlaybus.bridge import MemoryTransport, attach
from overlaybus.events import EventBus, HANDLER_ERROR_EVENT
from overlaybus.events.handlers import DiagnosticSink


async def main():
    logging.basicConfig(level=logging.WARNING)

    print("="*70)
    print("1️⃣  LOCAL PUBLISH / SUBSCRIBE")
    print("="*70)

    main_bus = EventBus()
    renderer_bus = EventBus()

    main_bus.subscribe("resource:selected", lambda p: print(f"   main      got resource:selected {p}"))
    renderer_bus.subscribe("resource:selected", lambda p: print(f"   renderer  got resource:selected {p}"))

    main_bus.publish("resource:selected", {"id": "logo.svg"})
    print("   (not bridged yet: only main saw it)")

    print("\n" + "="*70)
    print("2️⃣  HANDLER ERROR ISOLATION")
    print("="*70)

    def broken(payload):
        raise RuntimeError("boom")

    main_bus.subscribe("ping", lambda p: print(f"   H1 got {p}"))
    main_bus.subscribe("ping", broken)
    main_bus.subscribe("ping", lambda p: print(f"   H3 got {p}"))
    main_bus.subscribe(HANDLER_ERROR_EVENT, lambda p: print(f"   reported: {p['handler']} failed with {p['error']}"))
    logging.getLogger("overlaybus.events.bus").setLevel(logging.CRITICAL)
    main_bus.publish("ping", {"n": 1})

    print("\n" + "="*70)
    print("3️⃣  BRIDGED BUSES")
    print("="*70)

    sink = DiagnosticSink(renderer_bus).attach()
    a, b = MemoryTransport.pair("main", "renderer")
    main_bridge = attach(main_bus, a, process_label="main", reconnect_delay=0.1)
    renderer_bridge = attach(renderer_bus, b, process_label="renderer", reconnect_delay=0.1)
    main_bridge.start()
    renderer_bridge.start()
    await main_bridge.wait_connected(timeout=2)
    await renderer_bridge.wait_connected(timeout=2)

    main_bus.publish("resource:selected", {"id": "frame.svg"})
    await asyncio.sleep(0.1)

    print(f"\n   main bridge:     {main_bridge.stats}")
    print(f"   renderer bridge: {renderer_bridge.stats}")
    print(f"   renderer saw {len(sink)} event(s):")
    for event in sink.recent():
        print(f"     [{event['originTag']}] {event['eventName']} from {event['processLabel']}")

    await main_bridge.disable()
    await renderer_bridge.disable()

    print("\n" + "="*70)
    print("✅ Demo complete")
    print("="*70)


if __name__ == "__main__":
    asyncio.run(main())
