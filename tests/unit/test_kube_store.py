from unittest import mock

import pytest
from kubernetes.client.rest import ApiException

from proxmox_ipam.config import IN_CLUSTER_IP_POOL, PROXMOX_CLUSTER
from proxmox_ipam.kube import KubernetesStore
from proxmox_ipam.store import AlreadyExistsError, ConflictError, NotFoundError, StoreError

MANIFEST = {"metadata": {"name": "demo-v4-icip", "namespace": "default"}, "spec": {}}


def build_store(api=None, **kwargs):
    api = api or mock.MagicMock()
    return api, KubernetesStore(api, **kwargs)


def test_get_passes_resource_coordinates():
    api, store = build_store(request_timeout=3.0)
    api.get_namespaced_custom_object.return_value = MANIFEST

    assert store.get(IN_CLUSTER_IP_POOL, "default", "demo-v4-icip") == MANIFEST
    api.get_namespaced_custom_object.assert_called_once_with(
        "ipam.cluster.x-k8s.io",
        "v1alpha2",
        "default",
        "inclusterippools",
        "demo-v4-icip",
        _request_timeout=3.0,
    )


def test_list_builds_label_selector():
    api, store = build_store(request_timeout=None)
    api.list_namespaced_custom_object.return_value = {"items": [MANIFEST]}

    items = store.list(
        IN_CLUSTER_IP_POOL,
        namespace="default",
        labels={"cluster.x-k8s.io/cluster-name": "demo", "a": "b"},
    )

    assert items == [MANIFEST]
    api.list_namespaced_custom_object.assert_called_once_with(
        "ipam.cluster.x-k8s.io",
        "v1alpha2",
        "default",
        "inclusterippools",
        label_selector="a=b,cluster.x-k8s.io/cluster-name=demo",
    )


def test_list_without_namespace_is_cluster_wide():
    api, store = build_store(request_timeout=None)
    api.list_cluster_custom_object.return_value = {"items": []}

    assert store.list(PROXMOX_CLUSTER) == []
    api.list_cluster_custom_object.assert_called_once_with(
        "infrastructure.cluster.x-k8s.io", "v1alpha1", "proxmoxclusters"
    )


def test_create_fills_in_kind():
    api, store = build_store(request_timeout=None)

    store.create(IN_CLUSTER_IP_POOL, MANIFEST)

    body = api.create_namespaced_custom_object.call_args.args[4]
    assert body["apiVersion"] == "ipam.cluster.x-k8s.io/v1alpha2"
    assert body["kind"] == "InClusterIPPool"


def test_update_status_uses_status_subresource():
    api, store = build_store(request_timeout=None)

    store.update_status(PROXMOX_CLUSTER, {"metadata": {"name": "demo"}, "status": {}})

    api.replace_namespaced_custom_object_status.assert_called_once()
    api.replace_namespaced_custom_object.assert_not_called()


@pytest.mark.parametrize(
    "method, call, status, expected",
    [
        ("get_namespaced_custom_object", "get", 404, NotFoundError),
        ("delete_namespaced_custom_object", "delete", 404, NotFoundError),
        ("create_namespaced_custom_object", "create", 409, AlreadyExistsError),
        ("replace_namespaced_custom_object", "update", 409, ConflictError),
        ("replace_namespaced_custom_object_status", "update_status", 409, ConflictError),
        ("get_namespaced_custom_object", "get", 500, StoreError),
        ("list_namespaced_custom_object", "list", 403, StoreError),
    ],
)
def test_api_errors_are_translated(method, call, status, expected):
    api, store = build_store()
    getattr(api, method).side_effect = ApiException(status=status, reason="boom")

    args = {
        "get": (IN_CLUSTER_IP_POOL, "default", "demo-v4-icip"),
        "delete": (IN_CLUSTER_IP_POOL, "default", "demo-v4-icip"),
        "create": (IN_CLUSTER_IP_POOL, MANIFEST),
        "update": (IN_CLUSTER_IP_POOL, MANIFEST),
        "update_status": (IN_CLUSTER_IP_POOL, MANIFEST),
        "list": (IN_CLUSTER_IP_POOL, "default"),
    }[call]

    with pytest.raises(expected) as excinfo:
        getattr(store, call)(*args)

    if expected is StoreError:
        assert type(excinfo.value) is StoreError
