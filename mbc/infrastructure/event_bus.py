import threading
from typing import Type, Callable, List, Dict, Any, Optional
from mbc.domain.events import Event


class EventBus:
    """Synchronous event bus. Callbacks run on the publishing thread.

    Workers publish from pool threads, so the subscriber table is guarded and
    callbacks are invoked on a copy of the list.
    """

    def __init__(self):
        self._subscribers: Dict[Type[Event], List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[Event], callback: Optional[Callable[[Any], None]] = None):
        """Subscribes a callback to a specific event type. Can be used as a decorator."""
        if callback is None:
            def decorator(func: Callable[[Any], None]):
                self.subscribe(event_type, func)
                return func
            return decorator

        with self._lock:
            self._subscribers.setdefault(event_type, []).append(callback)
        return callback

    def publish(self, event: Event):
        """Publishes an event to all subscribers of its exact type."""
        with self._lock:
            callbacks = list(self._subscribers.get(type(event), ()))
        for callback in callbacks:
            callback(event)
