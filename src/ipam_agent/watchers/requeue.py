"""Re-publishes clusters whose last reconcile pass asked to be requeued."""

from __future__ import annotations

import logging
from threading import Event, Thread

from cluster_dispatch import ClusterReconcile, HandlerRegistry
from cluster_dispatch.handlers import IPAMHandlerAdapter

LOG = logging.getLogger(__name__)

DEFAULT_TICK = 0.5


class RequeueScheduler(Thread):
    """Feed due requeues back into the registry between watcher resyncs."""

    def __init__(
        self,
        registry: HandlerRegistry,
        handler: IPAMHandlerAdapter,
        *,
        stop_event: Event,
        tick: float = DEFAULT_TICK,
    ) -> None:
        super().__init__(daemon=True)
        self._registry = registry
        self._handler = handler
        self._stop = stop_event
        self._tick = tick

    def run(self) -> None:
        LOG.info("Starting requeue scheduler (tick=%ss)", self._tick)
        while not self._stop.is_set():
            self.poll()
            self._stop.wait(self._tick)
        LOG.info("Requeue scheduler stopped")

    def poll(self) -> int:
        due = self._handler.due()
        for namespace, name in due:
            if self._stop.is_set():
                break
            LOG.debug("requeue of %s/%s is due", namespace, name)
            try:
                self._registry.handle(ClusterReconcile(namespace, name))
            except Exception:
                LOG.exception("requeued reconcile of %s/%s failed", namespace, name)
        return len(due)
