"""
Diagnostic sink for event traffic.

Subscribes to some or all events on a bus and records them for debugging.
It only reads events; a failure inside the sink is isolated by the bus like
any other handler failure.
"""
from collections import deque
from typing import Callable, Iterable, List, Optional
import json
import logging

from pydantic_core import PydanticSerializationError

from overlaybus.models.schemas import Event

logger = logging.getLogger(__name__)


class DiagnosticSink:
    """
    Log and remember events seen on a bus.

    Args:
        bus: The bus to observe
        event_names: Events to record. None records every event on the bus.
        history_size: Number of recent events kept for recent()
    """

    def __init__(self, bus, event_names: Optional[Iterable[str]] = None, history_size: int = 100):
        self.bus = bus
        self.event_names = list(event_names) if event_names is not None else None
        self._history: deque = deque(maxlen=history_size)
        self._detachers: List[Callable[[], None]] = []

    @property
    def attached(self) -> bool:
        return bool(self._detachers)

    def attach(self) -> "DiagnosticSink":
        if self.attached:
            return self

        if self.event_names is None:
            self._detachers.append(self.bus.add_observer(self.record))
        else:
            for event_name in self.event_names:
                self._detachers.append(self.bus.subscribe(event_name, self.record, with_event=True))

        logger.info(
            f"Diagnostic sink attached to {'all events' if self.event_names is None else self.event_names}")
        return self

    def detach(self) -> None:
        """Stop recording. Safe to call at any time, including from a handler."""
        for detach in self._detachers:
            detach()
        self._detachers = []

    def record(self, event: Event) -> None:
        self._history.append(event)
        logger.info(f"[{event.origin_tag.value}] {event.event_name} {self._render(event.payload)}")

    def recent(self, limit: int | None = None) -> List[dict]:
        """Most recent events first, as JSON-friendly dicts."""
        events = list(self._history)[::-1]
        if limit is not None:
            events = events[:limit]
        return [self._to_dict(event) for event in events]

    def clear(self) -> None:
        self._history.clear()

    def __len__(self) -> int:
        return len(self._history)

    @staticmethod
    def _render(payload) -> str:
        try:
            return json.dumps(payload, default=str)
        except (TypeError, ValueError):
            return repr(payload)

    @staticmethod
    def _to_dict(event: Event) -> dict:
        try:
            return event.to_dict()
        except PydanticSerializationError:
            return {
                'eventName': event.event_name,
                'payload': repr(event.payload),
                'originTag': event.origin_tag.value,
                'processLabel': event.process_label,
                'timestamp': event.timestamp,
            }
