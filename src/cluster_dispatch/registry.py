"""Handler registry with per-cluster mutual exclusion."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Union

from .events import ClusterGone, ClusterReconcile
from .handlers import ClusterHandler

ClusterEvent = Union[ClusterReconcile, ClusterGone]


@dataclass
class _KeyLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class HandlerRegistry:
    """Dispatch cluster events to registered handlers.

    Events for the same cluster are handled one at a time; events for
    different clusters may be handled concurrently by different watcher
    threads.  A cluster's lock lives for as long as some thread holds or
    waits for it.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, ClusterHandler] = {}
        self._locks: Dict[str, _KeyLock] = {}
        self._guard = threading.Lock()

    def register(self, name: str, handler: ClusterHandler) -> None:
        if name in self._handlers:
            raise ValueError(f"handler '{name}' already registered")
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    @contextmanager
    def _exclusive(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    def handle(self, event: ClusterEvent) -> None:
        if isinstance(event, ClusterReconcile):
            with self._exclusive(event.key):
                self._on_cluster_reconcile(event)
        elif isinstance(event, ClusterGone):
            with self._exclusive(event.key):
                self._on_cluster_gone(event)
        else:
            raise TypeError(f"Unsupported event type: {type(event)!r}")

    def _on_cluster_reconcile(self, event: ClusterReconcile) -> None:
        for handler in list(self._handlers.values()):
            handler.on_cluster_reconcile(event.namespace, event.name)

    def _on_cluster_gone(self, event: ClusterGone) -> None:
        for handler in list(self._handlers.values()):
            handler.on_cluster_gone(event.namespace, event.name)
