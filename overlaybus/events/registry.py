"""
In-memory subscriber table for the event bus.

Maps each event name to the ordered list of subscriptions registered for it.
The registry owns the lists; callers only ever receive copies.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Set
import itertools
import logging

logger = logging.getLogger(__name__)

_subscription_ids = itertools.count(1)


@dataclass(eq=False)
class Subscription:
    """A registered interest in one event name."""
    event_name: str
    handler: Any
    wants_event: bool = False
    id: int = field(default_factory=lambda: next(_subscription_ids))

    @property
    def callback(self) -> Callable:
        """The callable to invoke: the handler itself or its ``handle`` method."""
        if callable(self.handler):
            return self.handler
        return self.handler.handle

    @property
    def name(self) -> str:
        return handler_name(self.handler)


def handler_name(handler: Any) -> str:
    """Readable name of a handler for logs and error reports."""
    name = getattr(handler, '__qualname__', None) or getattr(handler, '__name__', None)
    if name is None:
        name = type(handler).__name__
    return name


class EventRegistry:
    """
    Ordered subscriber lists keyed by event name.

    Subscriptions for one event name keep insertion order. Empty lists are
    deleted so repeated subscribe/unsubscribe cycles never leave entries behind.
    """

    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def add(self, event_name: str, handler: Any, wants_event: bool = False) -> Subscription:
        """Append a handler for an event and return its subscription token."""
        subscription = Subscription(event_name, handler, wants_event)
        if event_name not in self._subscriptions:
            self._subscriptions[event_name] = []
        self._subscriptions[event_name].append(subscription)
        logger.debug(
            f"Registered handler {subscription.name} for event '{event_name}'")
        return subscription

    def remove(self, event_name: str, target: Any) -> bool:
        """
        Remove the first entry matching ``target``.

        ``target`` is either a Subscription returned by ``add`` (matched by
        identity) or a handler (matched by equality). Returns False when
        nothing matched.
        """
        subscriptions = self._subscriptions.get(event_name)
        if not subscriptions:
            return False

        for index, subscription in enumerate(subscriptions):
            if isinstance(target, Subscription):
                matched = subscription is target
            else:
                matched = subscription.handler == target
            if matched:
                del subscriptions[index]
                if not subscriptions:
                    del self._subscriptions[event_name]
                logger.debug(
                    f"Removed handler {subscription.name} from event '{event_name}'")
                return True
        return False

    def list(self, event_name: str) -> List[Subscription]:
        """Snapshot of the subscriptions for an event, safe to iterate while mutating."""
        return list(self._subscriptions.get(event_name, ()))

    def clear(self, event_name: str | None = None) -> None:
        """Drop every subscription for one event, or for all events."""
        if event_name is None:
            self._subscriptions = {}
        else:
            self._subscriptions.pop(event_name, None)

    def names(self) -> Set[str]:
        return set(self._subscriptions)

    def count(self, event_name: str) -> int:
        return len(self._subscriptions.get(event_name, ()))

    def __contains__(self, event_name: str) -> bool:
        return event_name in self._subscriptions
