#!/usr/bin/env python3
"""
TUI bus monitor for the overlay event bus hub.

Bridges a local bus to the hub, prints every event that arrives and
publishes events typed as `event_name {"json": "payload"}`.
"""
import asyncio
import json
import sys
import os
from typing import Optional
import requests

from overlaybus.bridge import EventBridge, BRIDGE_CONNECTED_EVENT, BRIDGE_DISCONNECTED_EVENT
from overlaybus.config import get_settings, configure_logging
from overlaybus.events import EventBus, HANDLER_ERROR_EVENT
from overlaybus.models.schemas import Event


def parse_command(line: str) -> tuple[str, object]:
    """
    Split an input line into event name and JSON payload.

    >>> parse_command('overlay:moved {"x": 10}')
    ('overlay:moved', {'x': 10})
    >>> parse_command('scene:reset')
    ('scene:reset', None)
    """
    name, _, rest = line.strip().partition(" ")
    rest = rest.strip()
    payload = json.loads(rest) if rest else None
    return name, payload


class MonitorClient:
    def __init__(self, settings=None):
        self.settings = settings or get_settings()
        self.bus = EventBus()
        self.bridge: Optional[EventBridge] = None
        self.running = False

    def clear_screen(self):
        os.system('clear' if os.name == 'posix' else 'cls')

    def print_header(self):
        print("=" * 60)
        print(" Overlay Event Bus Monitor".center(60))
        print("=" * 60)
        print(f" Process label: {self.settings.process_label}".center(60))
        print("=" * 60)

    def check_hub(self) -> bool:
        try:
            response = requests.get(f"{self.settings.hub_http_url}/health", timeout=5)
            if response.status_code == 200:
                print(f"✓ Hub is up at {self.settings.hub_http_url}")
                return True
            else:
                print(f"✗ Hub health check failed: HTTP {response.status_code}")
                return False
        except requests.RequestException as e:
            print(f"✗ Error: {e}")
            return False

    def show_peers(self):
        try:
            response = requests.get(f"{self.settings.hub_http_url}/api/peers", timeout=5)
            response.raise_for_status()
            peers = response.json()["peers"]
            print(f"\n--- Connected peers ({len(peers)}) ---")
            for label in peers:
                print(f"  {label}")
            print("-" * 60)
        except requests.RequestException as e:
            print(f"✗ Failed to fetch peers: {e}")

    def print_event(self, event: Event):
        if event.event_name in (BRIDGE_CONNECTED_EVENT, BRIDGE_DISCONNECTED_EVENT, HANDLER_ERROR_EVENT):
            print(f"\n[SYSTEM] {event.event_name} {json.dumps(event.payload)}")
        else:
            source = event.process_label if event.is_remote else "me"
            print(f"\n[{source}] {event.event_name}: {json.dumps(event.payload, default=str)}")
        print("> ", end="", flush=True)

    async def read_commands(self):
        """Publish events typed on stdin."""
        loop = asyncio.get_running_loop()
        while self.running:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            line = line.strip()

            if not line:
                continue
            if line.lower() in ['/quit', '/exit', '/q']:
                self.running = False
                break
            elif line == '/help':
                print("\nCommands:")
                print("  event_name {json} - Publish an event")
                print("  /peers - List connected peers")
                print("  /quit, /exit, /q - Exit")
                print("> ", end="", flush=True)
            elif line == '/peers':
                await loop.run_in_executor(None, self.show_peers)
                print("> ", end="", flush=True)
            else:
                try:
                    name, payload = parse_command(line)
                except json.JSONDecodeError as e:
                    print(f"✗ Invalid JSON payload: {e}")
                    print("> ", end="", flush=True)
                    continue
                self.bus.publish(name, payload)

    async def start_monitor(self):
        """Bridge the local bus to the hub and watch it."""
        self.bus.add_observer(self.print_event)
        self.bridge = EventBridge.from_settings(self.bus, self.settings).attach()
        self.bridge.start()
        self.running = True

        print("\nType events to publish, /help for help\n")
        print("> ", end="", flush=True)
        try:
            await self.read_commands()
        finally:
            await self.bridge.disable()
            self.bus.remove_all_listeners()

    def run(self):
        """Main entry point."""
        configure_logging("WARNING")
        self.clear_screen()
        self.print_header()

        if not self.check_hub():
            input("\nPress Enter to exit...")
            return
        self.show_peers()

        try:
            asyncio.run(self.start_monitor())
        except KeyboardInterrupt:
            print("\n\nMonitor stopped. Goodbye!")


if __name__ == "__main__":
    client = MonitorClient()
    client.run()
