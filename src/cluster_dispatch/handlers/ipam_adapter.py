"""Adapter between the reconcile controller and the registry contract."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from proxmox_ipam.controller import ReconcileController, ReconcileResult

from .base import ClusterHandler

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Outcome:
    result: ReconcileResult
    due: Optional[float]


class IPAMHandlerAdapter(ClusterHandler):
    """Wrap :class:`~proxmox_ipam.controller.ReconcileController` for registry use.

    The adapter remembers the outcome of the last pass per cluster.  Passes
    that asked to be requeued become due once their ``requeue_after`` has
    elapsed (immediately when none was given); :meth:`due` lists them.
    """

    def __init__(
        self,
        controller: ReconcileController,
        *,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._controller = controller
        self._cancel = cancel
        self._clock = clock
        self._outcomes: Dict[Tuple[str, str], _Outcome] = {}
        self._lock = threading.Lock()

    @property
    def controller(self) -> ReconcileController:
        return self._controller

    def last_result(self, namespace: str, name: str) -> Optional[ReconcileResult]:
        with self._lock:
            outcome = self._outcomes.get((namespace, name))
        return outcome.result if outcome else None

    def pending(self) -> Dict[str, ReconcileResult]:
        """Clusters whose last pass asked to be requeued."""

        with self._lock:
            return {
                f"{namespace}/{name}": outcome.result
                for (namespace, name), outcome in self._outcomes.items()
                if outcome.due is not None
            }

    def due(self) -> List[Tuple[str, str]]:
        """Requeued clusters whose delay has elapsed, oldest first."""

        now = self._clock()
        with self._lock:
            ready = [
                (outcome.due, key)
                for key, outcome in self._outcomes.items()
                if outcome.due is not None and outcome.due <= now
            ]
        return [key for _, key in sorted(ready)]

    def on_cluster_reconcile(self, namespace: str, name: str) -> None:
        result = self._controller.reconcile(namespace, name, cancel=self._cancel)
        due = None
        if result.requeue:
            due = self._clock() + (result.requeue_after or 0.0)
            LOG.debug(
                "cluster %s/%s requeued (after %s)", namespace, name, result.requeue_after
            )
        with self._lock:
            self._outcomes[(namespace, name)] = _Outcome(result, due)

    def on_cluster_gone(self, namespace: str, name: str) -> None:
        with self._lock:
            self._outcomes.pop((namespace, name), None)


def build_ipam_handler(
    controller: ReconcileController,
    *,
    cancel: Optional[threading.Event] = None,
    clock: Callable[[], float] = time.monotonic,
) -> IPAMHandlerAdapter:
    """Helper mirroring the builder used for other handlers."""

    return IPAMHandlerAdapter(controller, cancel=cancel, clock=clock)
