"""Kubernetes poller that resyncs every ProxmoxCluster on an interval."""

from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Optional

from cluster_dispatch import HandlerRegistry
from proxmox_ipam.config import PROXMOX_CLUSTER
from proxmox_ipam.store import RecordStore

from .utils import ClusterTracker, cluster_key

LOG = logging.getLogger(__name__)


class KubernetesClusterWatcher(Thread):
    """List ProxmoxClusters and publish level-triggered reconcile events."""

    def __init__(
        self,
        registry: HandlerRegistry,
        store: RecordStore,
        *,
        namespace: Optional[str],
        interval: float,
        stop_event: Event,
    ) -> None:
        super().__init__(daemon=True)
        self._store = store
        self._namespace = namespace
        self._interval = interval
        self._stop = stop_event
        self._tracker = ClusterTracker(registry)

    def run(self) -> None:
        LOG.info(
            "Starting kubernetes cluster watcher (namespace=%s, interval=%ss)",
            self._namespace or "*",
            self._interval,
        )
        while not self._stop.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("kubernetes watcher encountered an error")
            self._stop.wait(self._interval)
        LOG.info("Kubernetes cluster watcher stopped")

    def poll(self) -> None:
        manifests = self._store.list(PROXMOX_CLUSTER, namespace=self._namespace)
        LOG.debug("kubernetes watcher listed %d clusters", len(manifests))
        self._tracker.update(cluster_key(manifest) for manifest in manifests)


def create_kubernetes_watcher(
    registry: HandlerRegistry,
    store: RecordStore,
    options: dict,
    stop_event: Event,
    default_interval: float,
) -> KubernetesClusterWatcher:
    interval = float(options.get("interval", default_interval))
    return KubernetesClusterWatcher(
        registry,
        store,
        namespace=options.get("namespace"),
        interval=interval,
        stop_event=stop_event,
    )
