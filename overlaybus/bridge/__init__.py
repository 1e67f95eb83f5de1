"""
Cross-process bridging for the event bus.
"""
from overlaybus.bridge.bridge import (
    EventBridge,
    BridgeState,
    attach,
    BRIDGE_CONNECTED_EVENT,
    BRIDGE_DISCONNECTED_EVENT,
)
from overlaybus.bridge.transport import (
    Transport,
    TransportError,
    WebSocketTransport,
    MemoryTransport,
    create_transport,
)

__all__ = [
    'EventBridge', 'BridgeState', 'attach',
    'BRIDGE_CONNECTED_EVENT', 'BRIDGE_DISCONNECTED_EVENT',
    'Transport', 'TransportError', 'WebSocketTransport', 'MemoryTransport', 'create_transport',
]
