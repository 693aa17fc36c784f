"""Event primitives consumed by the handler registry."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ClusterReconcile:
    """Asks handlers to bring a cluster in line with its desired state.

    Watchers publish this on every resync, not only on change, so handlers
    must treat it as idempotent.
    """

    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ClusterGone:
    """Signals that the cluster record no longer exists."""

    namespace: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"
