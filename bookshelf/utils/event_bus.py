"""
In-process domain event bus.

Mutating services emit events after their writes commit; subscribers (cache
invalidation, UI refreshers) react without the services knowing about them.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class Events:
    BOOK_SAVED = 'book:saved'
    BOOK_DELETED = 'book:deleted'
    BOOK_RESTORED = 'book:restored'
    GENRE_CREATED = 'genre:created'
    GENRE_UPDATED = 'genre:updated'
    GENRE_DELETED = 'genre:deleted'
    SERIES_CREATED = 'series:created'
    SERIES_UPDATED = 'series:updated'
    SERIES_DELETED = 'series:deleted'
    SERIES_MERGED = 'series:merged'
    WISHLIST_CHANGED = 'wishlist:changed'
    COUNTS_RECONCILED = 'counts:reconciled'


class EventBus:
    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """Subscribe; returns a callable that unsubscribes."""
        self._listeners[event].append(listener)
        return lambda: self.off(event, listener)

    def once(self, event: str, listener: Listener) -> Callable[[], None]:
        def wrapper(payload):
            self.off(event, wrapper)
            listener(payload)
        return self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def emit(self, event: str, payload: Any = None) -> None:
        """Deliver to every listener; a failing listener is logged and skipped."""
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(payload)
            except Exception as e:
                logger.error(f"Error in listener for {event}: {e}")

    def clear(self, event: Optional[str] = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))


# Which cache scopes each event makes stale
INVALIDATION_MAP = {
    Events.BOOK_SAVED: ('books', 'genres', 'series'),
    Events.BOOK_DELETED: ('books', 'genres', 'series'),
    Events.BOOK_RESTORED: ('books', 'genres', 'series'),
    Events.GENRE_CREATED: ('genres',),
    Events.GENRE_UPDATED: ('genres',),
    Events.GENRE_DELETED: ('genres', 'books'),
    Events.SERIES_CREATED: ('series',),
    Events.SERIES_UPDATED: ('series',),
    Events.SERIES_DELETED: ('series', 'books'),
    Events.SERIES_MERGED: ('series', 'books'),
    Events.WISHLIST_CHANGED: ('wishlist',),
    Events.COUNTS_RECONCILED: ('genres', 'series'),
}


def wire_cache_invalidation(bus: EventBus, cache) -> List[Callable[[], None]]:
    """Subscribe ``cache.invalidate`` to every mutating event.

    Payloads must carry ``user_id``. Returns the unsubscribe callables.
    """
    unsubscribers = []
    for event, scopes in INVALIDATION_MAP.items():
        def listener(payload, scopes=scopes):
            user_id = (payload or {}).get('user_id')
            if not user_id:
                return
            for scope in scopes:
                cache.invalidate(user_id, scope)
        unsubscribers.append(bus.on(event, listener))
    return unsubscribers
