"""Abstract interface for cluster event handlers."""

from __future__ import annotations

from abc import ABC, abstractmethod


class ClusterHandler(ABC):
    """Base class for handlers managed by :class:`HandlerRegistry`."""

    @abstractmethod
    def on_cluster_reconcile(self, namespace: str, name: str) -> None:
        """Reconcile the cluster ``namespace/name``."""

    @abstractmethod
    def on_cluster_gone(self, namespace: str, name: str) -> None:
        """Drop any state kept for the removed cluster."""
