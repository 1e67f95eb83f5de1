from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List, Literal
from urllib.parse import quote
import logging


class Settings(BaseSettings):
    """
    Settings loaded from OVERLAYBUS_* environment variables or a .env file.
    Every value has a default so the bus works without any configuration.
    """
    model_config = SettingsConfigDict(
        env_prefix="OVERLAYBUS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Label this process attaches to every event it forwards
    process_label: str = "overlay"

    # Relay hub
    hub_host: str = "127.0.0.1"
    hub_port: int = 8765
    hub_path: str = "/ws/bridge"

    # Bridge
    transport: Literal["websocket"] = "websocket"
    reconnect_delay_seconds: float = 2.0
    outbound_buffer_size: int = 256

    # Diagnostics
    diagnostic_history_size: int = 100
    log_level: str = "INFO"

    # CORS configuration for overlay pages talking to the hub
    cors_origins: str = "http://localhost:3000,http://localhost:8080"

    @property
    def hub_http_url(self) -> str:
        return f"http://{self.hub_host}:{self.hub_port}"

    @property
    def hub_url(self) -> str:
        """WebSocket URL a bridge connects to, including this process's label."""
        return f"ws://{self.hub_host}:{self.hub_port}{self.hub_path}?label={quote(self.process_label, safe='')}"

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


@lru_cache()
def get_settings():
    """Get cached settings instance."""
    try:
        return Settings()
    except Exception:
        print("\n" + "="*70)
        print("ERROR: Failed to load configuration!")
        print("="*70)
        print("\nInvalid OVERLAYBUS_* environment variables. Supported variables:")
        print("  - OVERLAYBUS_PROCESS_LABEL (defaults to 'overlay')")
        print("  - OVERLAYBUS_HUB_HOST / OVERLAYBUS_HUB_PORT (defaults to 127.0.0.1:8765)")
        print("  - OVERLAYBUS_TRANSPORT (only 'websocket')")
        print("  - OVERLAYBUS_RECONNECT_DELAY_SECONDS (seconds, defaults to 2.0)")
        print("  - OVERLAYBUS_OUTBOUND_BUFFER_SIZE (defaults to 256)")
        print("  - OVERLAYBUS_DIAGNOSTIC_HISTORY_SIZE (defaults to 100)")
        print("  - OVERLAYBUS_LOG_LEVEL (defaults to INFO)")
        print("="*70)
        raise


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the hub and client entry points."""
    level = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
