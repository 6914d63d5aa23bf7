"""In-process domain events.

Handlers are plain callables registered per event name. They run after the
change they describe has been committed; a failing handler is logged and
never affects the caller or the other handlers.

Events emitted by the core:
    relationship_added    {"edge_id", "person_a", "person_b", "type_code"}
    relationship_removed  {"edge_id", "person_a", "person_b", "type_code"}
    profiles_merged       {"kept_id", "merged_id", "duplicate_id",
                           "relationships_transferred", "relationships_dropped"}
"""
from __future__ import annotations
from collections import defaultdict
from typing import Any, Callable, Dict, List
import logging
import threading

RELATIONSHIP_ADDED = "relationship_added"
RELATIONSHIP_REMOVED = "relationship_removed"
PROFILES_MERGED = "profiles_merged"

Handler = Callable[[str, Dict[str, Any]], None]


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, name: str, handler: Handler) -> None:
        with self._lock:
            self._handlers[name].append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> bool:
        with self._lock:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
            return False

    def emit(self, name: str, payload: Dict[str, Any]) -> int:
        """Deliver payload to every handler of name; return how many succeeded."""
        with self._lock:
            handlers = list(self._handlers.get(name, []))
        delivered = 0
        for handler in handlers:
            try:
                handler(name, payload)
                delivered += 1
            except Exception:
                logging.exception("event handler %r failed for %s", handler, name)
        return delivered
