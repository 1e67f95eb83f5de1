"""
In-process event bus for decoupled overlay components.

Components publish named events and other components subscribe to them
without knowing about each other. Create one bus per process (or per test)
and pass it to the components that need it.

Example:
    bus = EventBus()

    # Register a handler
    @bus.on('resource:selected')
    def handle_selection(payload):
        print(f"Selected: {payload['id']}")

    # Or keep the unsubscribe function
    unsubscribe = bus.subscribe('resource:selected', handle_selection)

    # Publish an event
    bus.publish('resource:selected', {'id': 'logo.svg'})

    unsubscribe()
"""
from typing import Any, Callable, Dict, List, Set
import asyncio
import inspect
import logging

from overlaybus.events.registry import EventRegistry, Subscription
from overlaybus.models.schemas import Event

logger = logging.getLogger(__name__)

HANDLER_ERROR_EVENT = 'handler:error'


class InvalidSubscription(ValueError):
    """Raised when subscribe() gets an empty event name or a non-callable handler."""


def _is_handler(handler: Any) -> bool:
    return callable(handler) or callable(getattr(handler, 'handle', None))


class EventBus:
    """
    Synchronous publish/subscribe bus.

    Handlers run in subscription order. A handler that raises is logged and
    reported as a ``handler:error`` event; it never stops the remaining
    handlers and never reaches the publisher. Failures of ``handler:error``
    handlers are only logged so error reporting cannot recurse.

    Each publish iterates a snapshot of the subscriber list: handlers added
    during a publish run from the next publish on, and a handler removed
    during a publish may still run in that same pass if it was already in
    the snapshot.

    Coroutine handlers are started as tasks on the running loop and not
    awaited; use publish_async() to wait for them.
    """

    def __init__(self):
        self._registry = EventRegistry()
        self._observers: List[Callable[[Event], Any]] = []
        self._pending: Set[asyncio.Task] = set()
        self.stats: Dict[str, int] = {
            "published": 0,
            "delivered": 0,
            "handler_errors": 0,
        }

    def subscribe(self, event_name: str, handler: Any, *, with_event: bool = False) -> Callable[[], None]:
        """
        Register a handler for an event.

        Args:
            event_name: Name of the event to listen for (non-empty)
            handler: Callable taking the payload, or an object with a
                ``handle(payload)`` method
            with_event: Pass the full Event (origin, timestamp, label)
                instead of the bare payload

        Returns:
            A zero-argument function removing exactly this subscription.
            Calling it more than once is a no-op.

        Raises:
            InvalidSubscription: if the event name is empty or the handler
                is not callable
        """
        if not isinstance(event_name, str) or not event_name:
            raise InvalidSubscription(f"Event name must be a non-empty string, got {event_name!r}")
        if not _is_handler(handler):
            raise InvalidSubscription(
                f"Handler for '{event_name}' must be callable or define handle(), got {type(handler).__name__}")

        subscription = self._registry.add(event_name, handler, wants_event=with_event)

        def unsubscribe() -> None:
            self._registry.remove(event_name, subscription)

        return unsubscribe

    def on(self, event_name: str, *, with_event: bool = False):
        """
        Decorator to register an event handler.

        Example:
            @bus.on('overlay:moved')
            def handle_move(payload):
                print(payload['x'], payload['y'])
        """
        def decorator(handler: Callable):
            self.subscribe(event_name, handler, with_event=with_event)
            return handler
        return decorator

    def unsubscribe(self, event_name: str, handler: Any) -> bool:
        """Remove the first subscription of ``handler`` for an event. Unknown handlers are ignored."""
        return self._registry.remove(event_name, handler)

    def publish(self, event_name: str, payload: Any = None) -> None:
        """
        Deliver an event to every handler currently subscribed to it.

        Returns once all handlers have run. Publishing an event nobody
        listens to is a no-op.
        """
        self.dispatch(Event(event_name=event_name, payload=payload))

    def dispatch(self, event: Event) -> None:
        """Deliver an already built Event, keeping its origin and timestamp."""
        self.stats["published"] += 1
        subscriptions = self._registry.list(event.event_name)

        # observers first so events published by handlers are observed after this one
        self._notify_observers(event)

        if subscriptions:
            logger.debug(
                f"Publishing event '{event.event_name}' to {len(subscriptions)} handler(s)")
        for subscription in subscriptions:
            try:
                result = subscription.callback(event if subscription.wants_event else event.payload)
                if inspect.iscoroutine(result):
                    self._schedule(subscription, event, result)
                self.stats["delivered"] += 1
            except Exception as e:
                self._handler_failed(subscription, event, e)

    async def publish_async(self, event_name: str, payload: Any = None) -> None:
        """
        Like publish(), but awaits handlers that return awaitables.

        Handlers still run one at a time in subscription order.
        """
        event = Event(event_name=event_name, payload=payload)
        self.stats["published"] += 1
        subscriptions = self._registry.list(event_name)
        self._notify_observers(event)

        for subscription in subscriptions:
            try:
                result = subscription.callback(event if subscription.wants_event else payload)
                if inspect.isawaitable(result):
                    await result
                self.stats["delivered"] += 1
            except Exception as e:
                self._handler_failed(subscription, event, e)

    def add_observer(self, observer: Callable[[Event], Any]) -> Callable[[], None]:
        """
        Register a callback receiving every dispatched Event.

        Observers run before the event's handlers, so they see events in
        publish order even when a handler publishes another event.
        Returns a function removing the observer.
        """
        self._observers.append(observer)

        def remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return remove

    def remove_all_listeners(self, event_name: str | None = None) -> None:
        """
        Clear handlers for a specific event or all events.

        Args:
            event_name: Event to clear handlers for. If None, clears all.
        """
        self._registry.clear(event_name)
        if event_name:
            logger.debug(f"Cleared all handlers for event '{event_name}'")
        else:
            logger.debug("Cleared all event handlers")

    def get_registered_event_names(self) -> Set[str]:
        """Names of all events that have at least one handler."""
        return self._registry.names()

    def get_handler_count(self, event_name: str) -> int:
        """Get number of handlers registered for an event."""
        return self._registry.count(event_name)

    def _handler_failed(self, subscription: Subscription, event: Event, error: Exception) -> None:
        self.stats["handler_errors"] += 1
        logger.error(
            f"Error in handler {subscription.name} for event '{event.event_name}': {error}",
            exc_info=True
        )

        if event.event_name == HANDLER_ERROR_EVENT:
            # never report failures of error reporters
            return

        self.publish(HANDLER_ERROR_EVENT, {
            'eventName': event.event_name,
            'handler': subscription.name,
            'error': str(error),
            'errorType': type(error).__name__,
        })

    def _schedule(self, subscription: Subscription, event: Event, coro) -> None:
        """Run a coroutine handler in the background; publish() does not wait for it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(
                f"Handler {subscription.name} for '{event.event_name}' is a coroutine but no "
                f"event loop is running; use publish_async() to await it")
            return

        task = loop.create_task(coro)
        self._pending.add(task)

        def done(task: asyncio.Task) -> None:
            self._pending.discard(task)
            if not task.cancelled() and task.exception() is not None:
                self._handler_failed(subscription, event, task.exception())

        task.add_done_callback(done)

    def _notify_observers(self, event: Event) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception as e:
                logger.error(
                    f"Error in observer {getattr(observer, '__qualname__', observer)} "
                    f"for event '{event.event_name}': {e}",
                    exc_info=True
                )
