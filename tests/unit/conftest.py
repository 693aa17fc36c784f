from typing import Optional

import pytest

from proxmox_ipam.config import (
    CAPI_CLUSTER,
    IN_CLUSTER_IP_POOL,
    IP_ADDRESS,
    PROXMOX_CLUSTER,
)
from proxmox_ipam.store import InMemoryStore

V4_CONFIG = {
    "addresses": ["10.0.0.2-10.0.0.10"],
    "gateway": "10.0.0.1",
    "prefix": 24,
}


def cluster_manifest(
    name: str = "demo",
    namespace: str = "default",
    *,
    ipv4: Optional[dict] = V4_CONFIG,
    ipv6: Optional[dict] = None,
    parent: Optional[str] = "demo",
    parent_uid: Optional[str] = None,
    endpoint: Optional[dict] = None,
    annotations: Optional[dict] = None,
) -> dict:
    metadata: dict = {"name": name, "namespace": namespace}
    if parent is not None:
        ref = {"apiVersion": CAPI_CLUSTER.api_version, "kind": "Cluster", "name": parent}
        if parent_uid is not None:
            ref["uid"] = parent_uid
        metadata["ownerReferences"] = [ref]
    if annotations:
        metadata["annotations"] = annotations
    spec: dict = {"dnsServers": ["8.8.8.8", "8.8.4.4"]}
    if ipv4 is not None:
        spec["ipv4Config"] = ipv4
    if ipv6 is not None:
        spec["ipv6Config"] = ipv6
    if endpoint is not None:
        spec["controlPlaneEndpoint"] = endpoint
    return {"kind": PROXMOX_CLUSTER.kind, "metadata": metadata, "spec": spec}


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def make_cluster(store: InMemoryStore):
    """Create a parent ``Cluster`` and a ``ProxmoxCluster`` owned by it."""

    def _make(name: str = "demo", namespace: str = "default", *, paused: bool = False, **kwargs):
        parent_spec = {"paused": True} if paused else {}
        parent = store.create(
            CAPI_CLUSTER,
            {"metadata": {"name": name, "namespace": namespace}, "spec": parent_spec},
        )
        kwargs.setdefault("parent", name)
        kwargs.setdefault("parent_uid", parent["metadata"]["uid"])
        return store.create(PROXMOX_CLUSTER, cluster_manifest(name, namespace, **kwargs))

    return _make


@pytest.fixture
def resolve_claim(store: InMemoryStore):
    """Play the IPAM provider: bind an address to the claim named ``name``."""

    def _resolve(name: str = "demo", namespace: str = "default", address: str = "10.0.0.2"):
        claim_pool = store.list(IN_CLUSTER_IP_POOL, namespace=namespace)
        pool_name = claim_pool[0]["metadata"]["name"] if claim_pool else ""
        return store.create(
            IP_ADDRESS,
            {
                "metadata": {"name": name, "namespace": namespace},
                "spec": {
                    "address": address,
                    "prefix": 24,
                    "gateway": "10.0.0.1",
                    "claimRef": {"name": name},
                    "poolRef": {"name": pool_name},
                },
            },
        )

    return _resolve
