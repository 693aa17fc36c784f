from threading import Event

from cluster_dispatch import ClusterGone, ClusterReconcile, HandlerRegistry
from cluster_dispatch.handlers import ClusterHandler
from ipam_agent.watchers import create_kubernetes_watcher
from proxmox_ipam.config import PROXMOX_CLUSTER


class RecordingHandler(ClusterHandler):
    def __init__(self, fail_on=None):
        self.events = []
        self._fail_on = fail_on

    def on_cluster_reconcile(self, namespace, name):
        self.events.append(ClusterReconcile(namespace, name))
        if name == self._fail_on:
            raise RuntimeError("handler blew up")

    def on_cluster_gone(self, namespace, name):
        self.events.append(ClusterGone(namespace, name))


def add_cluster(store, name, namespace="default"):
    store.create(PROXMOX_CLUSTER, {"metadata": {"name": name, "namespace": namespace}})


def build_watcher(store, handler, **options):
    registry = HandlerRegistry()
    registry.register("recorder", handler)
    return create_kubernetes_watcher(registry, store, options, Event(), default_interval=5.0)


def test_watcher_resyncs_every_cluster(store):
    add_cluster(store, "one")
    add_cluster(store, "two")
    handler = RecordingHandler()
    watcher = build_watcher(store, handler)

    watcher.poll()
    watcher.poll()

    assert handler.events == [
        ClusterReconcile("default", "one"),
        ClusterReconcile("default", "two"),
    ] * 2


def test_watcher_reports_removed_clusters_once(store):
    add_cluster(store, "one")
    handler = RecordingHandler()
    watcher = build_watcher(store, handler)
    watcher.poll()

    store.delete(PROXMOX_CLUSTER, "default", "one")
    handler.events.clear()
    watcher.poll()
    watcher.poll()

    assert handler.events == [ClusterGone("default", "one")]


def test_watcher_honours_namespace_option(store):
    add_cluster(store, "one", namespace="team-a")
    add_cluster(store, "two", namespace="team-b")
    handler = RecordingHandler()

    build_watcher(store, handler, namespace="team-b").poll()

    assert handler.events == [ClusterReconcile("team-b", "two")]


def test_failing_cluster_does_not_block_others(store):
    add_cluster(store, "one")
    add_cluster(store, "two")
    handler = RecordingHandler(fail_on="one")

    build_watcher(store, handler).poll()

    assert ClusterReconcile("default", "two") in handler.events


def test_interval_option_overrides_default(store):
    watcher = build_watcher(store, RecordingHandler(), interval=1.5)

    assert watcher._interval == 1.5  # type: ignore[attr-defined]
