"""IP address management for Proxmox backed Cluster API clusters.

The package contains the controller logic that turns the IP configuration of
a ``ProxmoxCluster`` into IPAM records and a usable control-plane endpoint:

* :class:`~proxmox_ipam.allocator.PoolAllocator` creates one
  ``InClusterIPPool`` per configured IP family;
* :class:`~proxmox_ipam.allocator.EndpointAllocator` claims a single address
  from the first family's pool for the API server endpoint; and
* :class:`~proxmox_ipam.controller.ReconcileController` sequences both, keeps
  the cluster status up to date and tears everything down again when the
  cluster is deleted.

Record access goes through :class:`~proxmox_ipam.store.RecordStore` so the
logic can run against a real API server or the in-memory store used in tests
and the lab agent.
"""

from .controller import ReconcileController, ReconcileResult  # noqa: F401
from .store import InMemoryStore, RecordStore  # noqa: F401

__all__ = [
    "InMemoryStore",
    "ReconcileController",
    "ReconcileResult",
    "RecordStore",
]
