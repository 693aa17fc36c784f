"""Watcher implementations used by the IPAM agent."""

from .file import FileClusterWatcher  # noqa: F401
from .kube import KubernetesClusterWatcher, create_kubernetes_watcher  # noqa: F401
from .requeue import RequeueScheduler  # noqa: F401

__all__ = [
    "FileClusterWatcher",
    "KubernetesClusterWatcher",
    "RequeueScheduler",
    "create_kubernetes_watcher",
]
