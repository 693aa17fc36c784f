from unittest import mock

import pytest

from proxmox_ipam.allocator import EndpointAllocator, PoolAllocator
from proxmox_ipam.config import (
    CLUSTER_NAME_LABEL,
    IN_CLUSTER_IP_POOL,
    IP_ADDRESS,
    IP_ADDRESS_CLAIM,
    IP_FAMILY_LABEL,
    ClusterIdentity,
    ClusterSpec,
    IPConfigSpec,
    IPFamily,
    PoolRef,
)
from proxmox_ipam.providers import ClaimProvider, OwnershipConflictError, PoolProvider
from proxmox_ipam.store import AlreadyExistsError
from proxmox_ipam.validation import ValidationError

IDENTITY = ClusterIdentity(namespace="default", name="demo", uid="uid-1")
V4 = IPConfigSpec(addresses=("10.0.0.2-10.0.0.10",), gateway="10.0.0.1", prefix=24)
V6 = IPConfigSpec(addresses=("2001:db8::/64",), gateway="2001:db8::1", prefix=64)


def build_pool_allocator(store) -> PoolAllocator:
    return PoolAllocator(PoolProvider(store))


def test_ensure_pool_is_idempotent(store):
    allocator = build_pool_allocator(store)

    with mock.patch.object(store, "create", wraps=store.create) as create:
        first = allocator.ensure_pool(IDENTITY, IPFamily.V4, V4)
        second = allocator.ensure_pool(IDENTITY, IPFamily.V4, V4)

    assert first == second == PoolRef("demo-v4-icip", IPFamily.V4)
    assert create.call_count == 1

    pool = store.get(IN_CLUSTER_IP_POOL, "default", "demo-v4-icip")
    assert pool["spec"] == {
        "addresses": ["10.0.0.2-10.0.0.10"],
        "gateway": "10.0.0.1",
        "prefix": 24,
    }
    assert pool["metadata"]["labels"] == {
        CLUSTER_NAME_LABEL: "demo",
        IP_FAMILY_LABEL: "v4",
    }
    owner = pool["metadata"]["ownerReferences"][0]
    assert owner["kind"] == "ProxmoxCluster"
    assert owner["uid"] == "uid-1"
    assert owner["controller"] is True


def test_families_get_distinct_pools(store):
    allocator = build_pool_allocator(store)

    v4 = allocator.ensure_pool(IDENTITY, IPFamily.V4, V4)
    v6 = allocator.ensure_pool(IDENTITY, IPFamily.V6, V6)

    assert v4.name == "demo-v4-icip"
    assert v6.name == "demo-v6-icip"
    assert len(store.list(IN_CLUSTER_IP_POOL)) == 2


def test_existing_pool_is_not_updated_when_config_changes(store):
    allocator = build_pool_allocator(store)
    allocator.ensure_pool(IDENTITY, IPFamily.V4, V4)

    widened = IPConfigSpec(addresses=("10.0.0.2-10.0.0.200",), gateway="10.0.0.1", prefix=24)
    allocator.ensure_pool(IDENTITY, IPFamily.V4, widened)

    pool = store.get(IN_CLUSTER_IP_POOL, "default", "demo-v4-icip")
    assert pool["spec"]["addresses"] == ["10.0.0.2-10.0.0.10"]


def test_existing_pool_is_not_revalidated(store):
    allocator = build_pool_allocator(store)
    allocator.ensure_pool(IDENTITY, IPFamily.V4, V4)

    broken = IPConfigSpec(addresses=("not-an-address",), gateway="10.0.0.1", prefix=24)
    ref = allocator.ensure_pool(IDENTITY, IPFamily.V4, broken)

    assert ref.name == "demo-v4-icip"


def test_invalid_config_creates_nothing(store):
    allocator = build_pool_allocator(store)
    broken = IPConfigSpec(addresses=("10.0.0.2-10.0.0.10",), gateway="10.0.0.1", prefix=33)

    with pytest.raises(ValidationError):
        allocator.ensure_pool(IDENTITY, IPFamily.V4, broken)

    assert store.list(IN_CLUSTER_IP_POOL) == []


def test_create_race_is_treated_as_success(store):
    provider = PoolProvider(store)
    provider.create_pool(IDENTITY, IPFamily.V4, V4)

    # Lookup misses (stale cache), create then reports a clash.
    with mock.patch.object(store, "create", side_effect=AlreadyExistsError("exists")):
        pool = provider.create_pool(IDENTITY, IPFamily.V4, V4)

    assert pool.name == "demo-v4-icip"
    assert pool.prefix == 24


def test_pool_owned_by_someone_else_is_rejected(store):
    PoolProvider(store).create_pool(IDENTITY, IPFamily.V4, V4)
    impostor = ClusterIdentity(namespace="default", name="demo", uid="uid-2")

    with pytest.raises(OwnershipConflictError):
        build_pool_allocator(store).ensure_pool(impostor, IPFamily.V4, V4)


def test_endpoint_family_prefers_ipv4():
    both = ClusterSpec(ipv4_config=V4, ipv6_config=V6)
    v6_only = ClusterSpec(ipv6_config=V6)

    assert EndpointAllocator.endpoint_family(both) is IPFamily.V4
    assert EndpointAllocator.endpoint_family(v6_only) is IPFamily.V6
    assert EndpointAllocator.endpoint_family(ClusterSpec()) is None


def test_endpoint_claim_is_created_once_and_resolves(store, resolve_claim):
    pool = build_pool_allocator(store).ensure_pool(IDENTITY, IPFamily.V4, V4)
    allocator = EndpointAllocator(ClaimProvider(store))

    assert allocator.ensure_endpoint_address(IDENTITY, pool) == (None, False)
    assert allocator.ensure_endpoint_address(IDENTITY, pool) == (None, False)

    claims = store.list(IP_ADDRESS_CLAIM)
    assert len(claims) == 1
    assert claims[0]["metadata"]["name"] == "demo"
    assert claims[0]["spec"]["poolRef"] == {
        "apiGroup": "ipam.cluster.x-k8s.io",
        "kind": "InClusterIPPool",
        "name": "demo-v4-icip",
    }

    resolve_claim(address="10.0.0.5")

    address, resolved = allocator.ensure_endpoint_address(IDENTITY, pool)
    assert resolved is True
    assert address.address == "10.0.0.5"
    assert address.prefix == 24
    assert address.gateway == "10.0.0.1"


def test_claim_resolution_follows_address_ref(store):
    pool = build_pool_allocator(store).ensure_pool(IDENTITY, IPFamily.V4, V4)
    provider = ClaimProvider(store)
    claim = provider.create_claim(IDENTITY, pool)
    claim_manifest = store.get(IP_ADDRESS_CLAIM, "default", claim.name)
    claim_manifest["status"] = {"addressRef": {"name": "demo-addr-1"}}
    store.update_status(IP_ADDRESS_CLAIM, claim_manifest)
    store.create(
        IP_ADDRESS,
        {
            "metadata": {"name": "demo-addr-1", "namespace": "default"},
            "spec": {"address": "10.0.0.9", "prefix": 24, "gateway": "10.0.0.1"},
        },
    )

    resolved = provider.resolve(provider.get_claim(IDENTITY))

    assert resolved is not None
    assert resolved.address == "10.0.0.9"
