"""
Cross-process bridge between two event buses.

A bridge observes its local bus and forwards every locally published event
over a transport. Events arriving from the transport are re-published on
the local bus tagged as remote, and remote events are never forwarded
again, so two bridged processes cannot bounce an event back and forth.

Example:
    bus = EventBus()
    bridge = attach(bus, WebSocketTransport(settings.hub_url), process_label="renderer")
    bridge.start()
    ...
    await bridge.disable()
"""
from collections import deque
from typing import Any, Callable, Dict, Optional
import asyncio
import enum
import logging

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from overlaybus.bridge.transport import Transport, TransportError, create_transport
from overlaybus.events.bus import EventBus, HANDLER_ERROR_EVENT
from overlaybus.models.schemas import Event, OriginTag

logger = logging.getLogger(__name__)

BRIDGE_CONNECTED_EVENT = 'bridge:connected'
BRIDGE_DISCONNECTED_EVENT = 'bridge:disconnected'

# Describe this process only; never forwarded
LOCAL_ONLY_EVENTS = frozenset({
    BRIDGE_CONNECTED_EVENT,
    BRIDGE_DISCONNECTED_EVENT,
    HANDLER_ERROR_EVENT,
})


class BridgeState(str, enum.Enum):
    """Connection state of a bridge"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class EventBridge:
    """
    Forward local events over a transport and replay remote ones locally.

    Publishing never waits for the transport: outbound messages go into a
    bounded buffer drained by a background task. When the buffer is full
    the oldest message is dropped. Transport failures are logged, reported
    as a ``bridge:disconnected`` event and followed by a reconnect after
    ``reconnect_delay`` seconds, for as long as the bridge is enabled.
    """

    def __init__(
        self,
        bus: EventBus,
        transport: Transport,
        process_label: str,
        filter: Optional[Callable[[str], bool]] = None,
        reconnect_delay: float = 2.0,
        buffer_size: int = 256,
    ):
        if not process_label:
            raise ValueError("process_label must not be empty")
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")

        self.bus = bus
        self.transport = transport
        self.process_label = process_label
        self.filter = filter
        self.reconnect_delay = reconnect_delay

        self.state = BridgeState.DISCONNECTED
        self.enabled = False

        self._outbound: deque = deque(maxlen=buffer_size)
        self._wakeup = asyncio.Event()
        self._connected = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._remove_observer: Optional[Callable[[], None]] = None

        self.stats: Dict[str, int] = {
            "sent": 0,
            "received": 0,
            "dropped": 0,
            "invalid": 0,
            "reconnects": 0,
        }

    @classmethod
    def from_settings(cls, bus: EventBus, settings, transport: Optional[Transport] = None, **kwargs) -> "EventBridge":
        """Build a bridge configured from Settings."""
        if transport is None:
            transport = create_transport(settings)
        return cls(
            bus,
            transport,
            process_label=settings.process_label,
            reconnect_delay=settings.reconnect_delay_seconds,
            buffer_size=settings.outbound_buffer_size,
            **kwargs,
        )

    @property
    def attached(self) -> bool:
        return self._remove_observer is not None

    @property
    def pending(self) -> int:
        """Messages waiting to be sent."""
        return len(self._outbound)

    def attach(self) -> "EventBridge":
        """Start observing the local bus. Events published before start() are buffered."""
        if not self.attached:
            self._remove_observer = self.bus.add_observer(self._forward)
        return self

    def detach(self) -> None:
        """Stop observing the local bus."""
        if self._remove_observer is not None:
            self._remove_observer()
            self._remove_observer = None

    def start(self) -> asyncio.Task:
        """Run the connection loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self.enabled = True
        self._task = asyncio.get_running_loop().create_task(
            self.run(), name=f"bridge:{self.process_label}")
        return self._task

    async def disable(self) -> None:
        """Stop reconnecting and tear down the current connection, if any."""
        self.enabled = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_transport()
        self._connected.clear()
        self._set_state(BridgeState.DISCONNECTED)

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait until the bridge is connected. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def run(self) -> None:
        """Connect, pump messages until the connection drops, then retry."""
        self.enabled = True
        while self.enabled:
            self._set_state(BridgeState.CONNECTING)
            try:
                await self.transport.connect()
            except TransportError as e:
                logger.warning(f"Bridge '{self.process_label}' could not connect: {e}")
                self._set_state(BridgeState.DISCONNECTED)
                await asyncio.sleep(self.reconnect_delay)
                continue

            self._set_state(BridgeState.CONNECTED)
            self._connected.set()
            self.bus.publish(BRIDGE_CONNECTED_EVENT, {'processLabel': self.process_label})

            reason = await self._pump()

            self._connected.clear()
            await self._close_transport()
            self._set_state(BridgeState.DISCONNECTED)
            logger.warning(f"Bridge '{self.process_label}' disconnected: {reason}")
            self.bus.publish(BRIDGE_DISCONNECTED_EVENT, {
                'processLabel': self.process_label,
                'reason': reason,
            })

            if self.enabled:
                self.stats["reconnects"] += 1
                await asyncio.sleep(self.reconnect_delay)

    async def _pump(self) -> str:
        """Send and receive until either side fails. Returns the failure reason."""
        sender = asyncio.create_task(self._send_loop())
        receiver = asyncio.create_task(self._receive_loop())
        try:
            done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sender, receiver):
                task.cancel()
            await asyncio.gather(sender, receiver, return_exceptions=True)

        for task in done:
            error = task.exception()
            if isinstance(error, TransportError):
                return str(error)
            if error is not None:
                logger.error(
                    f"Bridge '{self.process_label}' failed unexpectedly: {error}",
                    exc_info=error
                )
                return f"{type(error).__name__}: {error}"
        return "connection closed"

    async def _send_loop(self) -> None:
        while True:
            while self._outbound:
                message = self._outbound.popleft()
                try:
                    await self.transport.send(message)
                except TransportError:
                    # keep it for the next connection
                    self._outbound.appendleft(message)
                    raise
                self.stats["sent"] += 1
            self._wakeup.clear()
            await self._wakeup.wait()

    async def _receive_loop(self) -> None:
        while True:
            raw = await self.transport.receive()
            try:
                event = Event.from_wire(raw)
            except (ValidationError, UnicodeDecodeError) as e:
                self.stats["invalid"] += 1
                logger.warning(f"Bridge '{self.process_label}' dropped malformed message: {e}")
                continue

            self.stats["received"] += 1
            self.bus.dispatch(event.model_copy(update={'origin_tag': OriginTag.REMOTE}))

    def _forward(self, event: Event) -> None:
        """Bus observer: queue local events for the transport."""
        if event.is_remote or event.event_name in LOCAL_ONLY_EVENTS:
            return
        if self.filter is not None and not self.filter(event.event_name):
            return

        try:
            message = event.model_copy(update={'process_label': self.process_label}).to_wire()
        except PydanticSerializationError as e:
            self.stats["invalid"] += 1
            logger.warning(
                f"Bridge '{self.process_label}' cannot serialize '{event.event_name}' payload: {e}")
            return

        if len(self._outbound) == self._outbound.maxlen:
            self.stats["dropped"] += 1
            logger.warning(
                f"Bridge '{self.process_label}' buffer full, dropping oldest message")
        self._outbound.append(message)
        self._wakeup.set()

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except TransportError as e:
            logger.debug(f"Error closing transport: {e}")

    def _set_state(self, state: BridgeState) -> None:
        if state != self.state:
            logger.debug(f"Bridge '{self.process_label}': {self.state.value} -> {state.value}")
            self.state = state


def attach(
    bus: EventBus,
    transport: Transport,
    *,
    process_label: str,
    filter: Optional[Callable[[str], bool]] = None,
    **options: Any,
) -> EventBridge:
    """
    Bridge a local bus over a transport.

    Every local publish is delivered locally as usual and, unless ``filter``
    rejects its event name, also sent over the transport. Call start() on
    the returned bridge from inside a running event loop to connect.
    """
    bridge = EventBridge(bus, transport, process_label=process_label, filter=filter, **options)
    return bridge.attach()
