from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Optional
import enum
import time


class OriginTag(str, enum.Enum):
    """Where an event was first published."""
    LOCAL = "local"
    REMOTE = "remote"


def now_ms() -> float:
    """Wall-clock time in milliseconds since epoch."""
    return time.time() * 1000


class Event(BaseModel):
    """
    A named occurrence with an opaque payload.

    The same model is used for local dispatch and as the bridge wire message.
    On the wire the field names are camelCase:

        {"eventName": "sync", "payload": {...}, "originTag": "local",
         "processLabel": "main", "timestamp": 1713916800000.0}
    """
    model_config = ConfigDict(populate_by_name=True)

    event_name: str = Field(alias="eventName")
    payload: Any = None
    origin_tag: OriginTag = Field(default=OriginTag.LOCAL, alias="originTag")
    process_label: Optional[str] = Field(default=None, alias="processLabel")
    timestamp: float = Field(default_factory=now_ms)

    @field_validator('event_name')
    @classmethod
    def validate_event_name(cls, v: str) -> str:
        """Event names must be non-empty."""
        if not v:
            raise ValueError('Event name must not be empty')
        return v

    @property
    def is_remote(self) -> bool:
        return self.origin_tag == OriginTag.REMOTE

    def to_wire(self) -> str:
        """Serialize to the JSON bridge message."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_wire(cls, raw: str | bytes) -> "Event":
        """Parse a JSON bridge message. Raises ValidationError if malformed."""
        return cls.model_validate_json(raw)

    def to_dict(self) -> dict:
        """JSON-friendly dict using the wire field names."""
        return self.model_dump(mode="json", by_alias=True)


class PeerList(BaseModel):
    peers: list[str]
    count: int


class RecentEvents(BaseModel):
    events: list[dict]
    count: int
