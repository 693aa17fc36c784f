"""Dispatch of cluster events to reconcile handlers.

Watchers publish :class:`ClusterReconcile` and :class:`ClusterGone` events to a
:class:`HandlerRegistry`, which fans them out to the registered handlers.  The
registry serialises work per cluster so two watchers never reconcile the same
cluster at the same time, while distinct clusters proceed in parallel.
"""

from .events import ClusterGone, ClusterReconcile  # noqa: F401
from .registry import HandlerRegistry  # noqa: F401

__all__ = [
    "ClusterGone",
    "ClusterReconcile",
    "HandlerRegistry",
]
