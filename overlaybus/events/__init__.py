"""
Event system for decoupled overlay components.

The event bus allows different parts of the application to communicate
without direct dependencies. Buses are created explicitly and passed to the
components that use them.
"""
from overlaybus.events.bus import EventBus, InvalidSubscription, HANDLER_ERROR_EVENT
from overlaybus.events.registry import EventRegistry, Subscription

__all__ = ['EventBus', 'EventRegistry', 'Subscription', 'InvalidSubscription', 'HANDLER_ERROR_EVENT']
