from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, WebSocket, Query
from fastapi.middleware.cors import CORSMiddleware

from overlaybus.config import Settings, get_settings, configure_logging
from overlaybus.events.bus import EventBus
from overlaybus.events.handlers.diagnostics import DiagnosticSink
from overlaybus.hub import ConnectionManager, handle_bridge_websocket
from overlaybus.models.schemas import PeerList, RecentEvents

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Build the relay hub application.

    Each application owns its own bus, connection manager and diagnostic
    sink, stored on ``app.state``.
    """
    settings = settings or get_settings()

    bus = EventBus()
    manager = ConnectionManager()
    sink = DiagnosticSink(bus, history_size=settings.diagnostic_history_size).attach()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: tear down bus subscriptions on shutdown."""
        logger.info(f"Relay hub listening on {settings.hub_path}")

        yield

        sink.detach()
        bus.remove_all_listeners()
        logger.info("Relay hub stopped")

    app = FastAPI(
        title="Overlay Event Bus Hub",
        version="1.0.0",
        description="Relays event bus messages between bridged overlay processes",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.bus = bus
    app.state.manager = manager
    app.state.sink = sink

    # Configure CORS with specific origins from settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root():
        return {
            "message": "Overlay Event Bus Hub",
            "version": "1.0.0",
            "endpoints": {
                "peers": "/api/peers",
                "recent_events": "/api/events/recent?limit=N",
                "websocket": f"{settings.hub_path}?label=X",
            },
            "docs": "/docs"
        }

    @app.get("/health")
    def health_check():
        """Health check endpoint for monitoring."""
        return {"status": "healthy", "peers": len(manager.peers)}

    @app.get("/api/peers", response_model=PeerList)
    def list_peers():
        labels = manager.labels()
        return PeerList(peers=labels, count=len(labels))

    @app.get("/api/events/recent", response_model=RecentEvents)
    def recent_events(limit: int = Query(20, ge=1, le=1000)):
        """Most recent relayed events, newest first."""
        events = sink.recent(limit)
        return RecentEvents(events=events, count=len(events))

    @app.websocket(settings.hub_path)
    async def bridge_endpoint(websocket: WebSocket, label: str = ""):
        """
        WebSocket endpoint for bridges.

        Parameters:
        - label: process label of the connecting bridge
        """
        await handle_bridge_websocket(websocket, label, manager, bus)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.hub_host, port=settings.hub_port)
