"""
WebSocket relay hub.

Bridges in separate processes (Electron main, overlay renderers, monitoring
tools) connect here with a process label. Every valid message received from
one peer is relayed to all other peers, never back to its sender.
"""
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Dict, List
import logging

from overlaybus.events.bus import EventBus
from overlaybus.models.schemas import Event, OriginTag

logger = logging.getLogger(__name__)

PEER_CONNECTED_EVENT = 'peer:connected'
PEER_DISCONNECTED_EVENT = 'peer:disconnected'


class ConnectionManager:
    def __init__(self):
        # Connected bridges: {process_label: websocket}
        self.peers: Dict[str, WebSocket] = {}

    async def connect(self, label: str, websocket: WebSocket):
        """Accept a bridge connection. A newer connection replaces one with the same label."""
        await websocket.accept()

        if label in self.peers:
            logger.warning(f"Peer '{label}' reconnected, replacing previous connection")
        self.peers[label] = websocket

    def disconnect(self, label: str, websocket: WebSocket):
        """Forget a bridge connection unless it was already replaced."""
        if self.peers.get(label) is websocket:
            del self.peers[label]

    async def relay(self, message: str, sender: str) -> int:
        """Send a message to every peer except the sender. Returns the number of recipients."""
        delivered = 0
        for label, connection in list(self.peers.items()):
            if label == sender:
                continue
            try:
                await connection.send_text(message)
                delivered += 1
            except Exception as e:
                # the peer's own handler cleans up when its receive fails
                logger.warning(f"Failed to relay to peer '{label}': {e}")
        return delivered

    def labels(self) -> List[str]:
        return sorted(self.peers)


async def handle_bridge_websocket(websocket: WebSocket, label: str, manager: ConnectionManager, bus: EventBus):
    """Relay bridge messages for one connected peer until it disconnects."""
    label = label.strip()
    if not label:
        await websocket.close(code=1008, reason="Label required")
        return

    await manager.connect(label, websocket)
    logger.info(f"Peer '{label}' connected ({len(manager.peers)} connected)")
    bus.publish(PEER_CONNECTED_EVENT, {'processLabel': label})

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            raw = message.get("text")
            if raw is None:
                logger.warning(f"Dropped binary frame from peer '{label}'")
                continue

            try:
                event = Event.from_wire(raw)
            except ValidationError as e:
                logger.warning(f"Dropped malformed message from peer '{label}': {e}")
                continue

            recipients = await manager.relay(raw, sender=label)
            logger.debug(f"Relayed '{event.event_name}' from '{label}' to {recipients} peer(s)")

            bus.dispatch(event.model_copy(update={'origin_tag': OriginTag.REMOTE}))

    except WebSocketDisconnect:
        logger.info(f"Peer '{label}' disconnected")
    finally:
        manager.disconnect(label, websocket)
        bus.publish(PEER_DISCONNECTED_EVENT, {'processLabel': label})
