import pytest

from proxmox_ipam.config import IN_CLUSTER_IP_POOL, PROXMOX_CLUSTER
from proxmox_ipam.store import AlreadyExistsError, ConflictError, NotFoundError


def build_record(name="demo", **metadata):
    return {
        "metadata": {"name": name, "namespace": "default", **metadata},
        "spec": {"addresses": ["10.0.0.2"], "gateway": "10.0.0.1", "prefix": 24},
    }


def test_create_assigns_identity(store):
    created = store.create(IN_CLUSTER_IP_POOL, build_record())

    metadata = created["metadata"]
    assert metadata["uid"]
    assert metadata["generation"] == 1
    assert metadata["resourceVersion"]
    assert created["kind"] == "InClusterIPPool"
    assert created["apiVersion"] == "ipam.cluster.x-k8s.io/v1alpha2"

    with pytest.raises(AlreadyExistsError):
        store.create(IN_CLUSTER_IP_POOL, build_record())


def test_get_returns_copies(store):
    store.create(IN_CLUSTER_IP_POOL, build_record())

    record = store.get(IN_CLUSTER_IP_POOL, "default", "demo")
    record["spec"]["prefix"] = 16

    assert store.get(IN_CLUSTER_IP_POOL, "default", "demo")["spec"]["prefix"] == 24


def test_update_bumps_generation_only_on_spec_change(store):
    created = store.create(IN_CLUSTER_IP_POOL, build_record())

    created["metadata"]["labels"] = {"team": "infra"}
    relabelled = store.update(IN_CLUSTER_IP_POOL, created)
    assert relabelled["metadata"]["generation"] == 1
    assert relabelled["metadata"]["labels"] == {"team": "infra"}

    relabelled["spec"]["prefix"] = 25
    changed = store.update(IN_CLUSTER_IP_POOL, relabelled)
    assert changed["metadata"]["generation"] == 2


def test_stale_writes_conflict(store):
    created = store.create(IN_CLUSTER_IP_POOL, build_record())
    store.update(IN_CLUSTER_IP_POOL, created)

    with pytest.raises(ConflictError):
        store.update(IN_CLUSTER_IP_POOL, created)
    with pytest.raises(ConflictError):
        store.update_status(IN_CLUSTER_IP_POOL, created)


def test_update_status_leaves_spec_alone(store):
    created = store.create(PROXMOX_CLUSTER, build_record())
    created["spec"]["prefix"] = 8
    created["status"] = {"ready": True}

    updated = store.update_status(PROXMOX_CLUSTER, created)

    assert updated["status"] == {"ready": True}
    assert updated["spec"]["prefix"] == 24
    assert updated["metadata"]["generation"] == 1


def test_update_ignores_status(store):
    created = store.create(PROXMOX_CLUSTER, build_record())
    created["status"] = {"ready": True}

    updated = store.update(PROXMOX_CLUSTER, created)

    assert "status" not in updated


def test_delete_without_finalizers_removes_record(store):
    store.create(IN_CLUSTER_IP_POOL, build_record())

    store.delete(IN_CLUSTER_IP_POOL, "default", "demo")

    with pytest.raises(NotFoundError):
        store.get(IN_CLUSTER_IP_POOL, "default", "demo")
    with pytest.raises(NotFoundError):
        store.delete(IN_CLUSTER_IP_POOL, "default", "demo")


def test_finalizers_gate_deletion(store):
    store.create(PROXMOX_CLUSTER, build_record(finalizers=["example.com/guard"]))

    store.delete(PROXMOX_CLUSTER, "default", "demo")
    record = store.get(PROXMOX_CLUSTER, "default", "demo")
    assert record["metadata"]["deletionTimestamp"]

    record["metadata"]["finalizers"] = []
    store.update(PROXMOX_CLUSTER, record)

    with pytest.raises(NotFoundError):
        store.get(PROXMOX_CLUSTER, "default", "demo")


def test_list_filters_by_namespace_and_labels(store):
    store.create(IN_CLUSTER_IP_POOL, build_record("a", labels={"cluster": "one"}))
    store.create(IN_CLUSTER_IP_POOL, build_record("b", labels={"cluster": "two"}))
    other = build_record("c", labels={"cluster": "one"})
    other["metadata"]["namespace"] = "other"
    store.create(IN_CLUSTER_IP_POOL, other)

    def names(records):
        return [record["metadata"]["name"] for record in records]

    assert names(store.list(IN_CLUSTER_IP_POOL)) == ["a", "b", "c"]
    assert names(store.list(IN_CLUSTER_IP_POOL, namespace="default")) == ["a", "b"]
    assert names(store.list(IN_CLUSTER_IP_POOL, labels={"cluster": "one"})) == ["a", "c"]
    assert store.list(PROXMOX_CLUSTER) == []
