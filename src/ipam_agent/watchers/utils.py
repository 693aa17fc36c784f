"""Helpers shared by the cluster watchers."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Set, Tuple

from cluster_dispatch import ClusterGone, ClusterReconcile, HandlerRegistry

LOG = logging.getLogger(__name__)

ClusterKey = Tuple[str, str]


def cluster_key(manifest: Mapping) -> ClusterKey:
    metadata = manifest.get("metadata") or {}
    return metadata.get("namespace", "default"), metadata["name"]


class ClusterTracker:
    """Turn successive cluster listings into registry events.

    Every listed cluster gets a :class:`ClusterReconcile` on every resync;
    clusters missing from a listing get a single :class:`ClusterGone`.
    """

    def __init__(self, registry: HandlerRegistry) -> None:
        self._registry = registry
        self._known: Set[ClusterKey] = set()

    @property
    def known(self) -> Set[ClusterKey]:
        return set(self._known)

    def _publish(self, event) -> None:
        try:
            self._registry.handle(event)
        except Exception:
            LOG.exception("handling %s failed", event)

    def update(self, keys: Iterable[ClusterKey]) -> None:
        current = set(keys)
        for namespace, name in sorted(current):
            self._publish(ClusterReconcile(namespace, name))
        for namespace, name in sorted(self._known - current):
            LOG.debug("cluster %s/%s removed", namespace, name)
            self._publish(ClusterGone(namespace, name))
        self._known = current
