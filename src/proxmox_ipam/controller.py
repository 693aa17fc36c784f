"""Reconcile loop for ProxmoxCluster IP address management.

Every call to :meth:`ReconcileController.reconcile` reads the current state of
one cluster from the record store and moves it one or more steps along::

    Initializing -> PoolsPending -> EndpointPending -> Ready
                 \\-> Deleting (whenever a deletion timestamp is present)

Progress is persisted after every step (one status write per pool) so the
loop can be interrupted at any point and resumed by a later call.  The
controller never blocks waiting for the IPAM provider; when an address claim
is still pending it asks to be requeued instead.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional

from .allocator import EndpointAllocator, PoolAllocator
from .config import (
    CAPI_CLUSTER,
    PAUSED_ANNOTATION,
    PROXMOX_CLUSTER,
    APIEndpoint,
    ControllerConfig,
    PoolRef,
    ProxmoxCluster,
    ResourceKind,
)
from .providers import ClaimProvider, PoolProvider
from .store import ConflictError, Manifest, NotFoundError, RecordStore, StoreError
from .validation import ValidationError, validate_endpoint

LOG = logging.getLogger(__name__)

INVALID_CONFIGURATION = "InvalidConfiguration"


class ReconcileCancelled(RuntimeError):
    """The reconcile pass was cancelled or ran past its deadline."""


@dataclass(frozen=True)
class ReconcileResult:
    requeue: bool = False
    requeue_after: Optional[float] = None

    @classmethod
    def done(cls) -> "ReconcileResult":
        return cls()

    @classmethod
    def after(cls, seconds: float) -> "ReconcileResult":
        return cls(requeue=True, requeue_after=seconds)


class ClusterPhase(Enum):
    INITIALIZING = "Initializing"
    POOLS_PENDING = "PoolsPending"
    ENDPOINT_PENDING = "EndpointPending"
    READY = "Ready"
    DELETING = "Deleting"


def phase_of(cluster: ProxmoxCluster) -> ClusterPhase:
    """Derive the lifecycle phase from persisted fields only."""

    if cluster.deletion_timestamp:
        return ClusterPhase.DELETING
    if cluster.status.ready:
        return ClusterPhase.READY
    families = [family for family, _ in cluster.spec.configured_families()]
    recorded = [family for family in families if cluster.status.pool_ref(family)]
    if not recorded:
        return ClusterPhase.INITIALIZING
    if len(recorded) < len(families):
        return ClusterPhase.POOLS_PENDING
    return ClusterPhase.ENDPOINT_PENDING


def is_paused(cluster: ProxmoxCluster, parent: Optional[Mapping[str, Any]]) -> bool:
    if PAUSED_ANNOTATION in cluster.annotations:
        return True
    if parent is None:
        return False
    return bool((parent.get("spec") or {}).get("paused"))


class ReconcileContext:
    """Cancellation signal and deadline shared by one reconcile pass."""

    def __init__(
        self,
        key: str,
        timeout: float,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.key = key
        self._cancel = cancel
        self._clock = clock
        self._deadline = clock() + timeout

    def check(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise ReconcileCancelled(f"reconcile of {self.key} cancelled")
        if self._clock() >= self._deadline:
            raise ReconcileCancelled(f"reconcile of {self.key} exceeded its deadline")

    def bind(self, store: RecordStore) -> "GuardedStore":
        return GuardedStore(store, self)


class GuardedStore(RecordStore):
    """Store wrapper that checks the reconcile context before every call."""

    def __init__(self, store: RecordStore, context: ReconcileContext) -> None:
        self._store = store
        self._context = context

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Manifest:
        self._context.check()
        return self._store.get(kind, namespace, name)

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Manifest]:
        self._context.check()
        return self._store.list(kind, namespace=namespace, labels=labels)

    def create(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        self._context.check()
        return self._store.create(kind, manifest)

    def update(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        self._context.check()
        return self._store.update(kind, manifest)

    def update_status(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        self._context.check()
        return self._store.update_status(kind, manifest)

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        self._context.check()
        self._store.delete(kind, namespace, name)


class ReconcileController:
    """Drive ProxmoxCluster records through pool and endpoint allocation.

    Parameters
    ----------
    store:
        Record store holding the clusters and IPAM records.
    config:
        Controller knobs; the control-plane port, finalizer name, requeue
        interval and per-pass timeout.
    clock:
        Monotonic clock used for pass deadlines.  Tests inject a fake one.
    """

    def __init__(
        self,
        store: RecordStore,
        config: Optional[ControllerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._config = config or ControllerConfig()
        self._clock = clock

    def reconcile(
        self,
        namespace: str,
        name: str,
        cancel: Optional[threading.Event] = None,
    ) -> ReconcileResult:
        key = f"{namespace}/{name}"
        context = ReconcileContext(
            key, self._config.reconcile_timeout, cancel=cancel, clock=self._clock
        )
        store = context.bind(self._store)
        try:
            return self._reconcile(store, namespace, name)
        except ReconcileCancelled as exc:
            LOG.warning("%s", exc)
            return ReconcileResult(requeue=True)
        except ConflictError as exc:
            LOG.info("conflict while reconciling %s, retrying: %s", key, exc)
            return ReconcileResult(requeue=True)
        except StoreError as exc:
            LOG.warning("transient error while reconciling %s: %s", key, exc)
            return ReconcileResult.after(self._config.requeue_after)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _reconcile(self, store: RecordStore, namespace: str, name: str) -> ReconcileResult:
        try:
            manifest = store.get(PROXMOX_CLUSTER, namespace, name)
        except NotFoundError:
            LOG.debug("cluster %s/%s is gone, nothing to do", namespace, name)
            return ReconcileResult.done()

        cluster = ProxmoxCluster.from_manifest(manifest)
        LOG.debug("reconciling %s (phase %s)", cluster.identity.key, phase_of(cluster).value)

        if cluster.deletion_timestamp:
            return self._reconcile_delete(store, cluster)
        return self._reconcile_normal(store, cluster)

    def _get_parent(
        self, store: RecordStore, cluster: ProxmoxCluster
    ) -> Optional[Manifest]:
        ref = cluster.parent_ref()
        if ref is None:
            return None
        try:
            parent = store.get(CAPI_CLUSTER, cluster.namespace, ref.name)
        except NotFoundError:
            return None
        if ref.uid and parent.get("metadata", {}).get("uid") != ref.uid:
            LOG.debug(
                "cluster %s/%s has been replaced, ignoring it", cluster.namespace, ref.name
            )
            return None
        return parent

    def _update(self, store: RecordStore, cluster: ProxmoxCluster) -> ProxmoxCluster:
        return ProxmoxCluster.from_manifest(store.update(PROXMOX_CLUSTER, cluster.to_manifest()))

    def _write_status(self, store: RecordStore, cluster: ProxmoxCluster) -> ProxmoxCluster:
        if not cluster.status_changed():
            return cluster
        return ProxmoxCluster.from_manifest(
            store.update_status(PROXMOX_CLUSTER, cluster.to_manifest())
        )

    def _mark_ready(self, store: RecordStore, cluster: ProxmoxCluster) -> ReconcileResult:
        if not cluster.status.ready:
            LOG.info(
                "cluster %s is ready, control plane endpoint %s:%s",
                cluster.identity.key,
                cluster.status.control_plane_endpoint.host,
                cluster.status.control_plane_endpoint.port,
            )
        cluster.status.ready = True
        cluster.status.clear_failure()
        cluster.status.observed_generation = cluster.generation
        self._write_status(store, cluster)
        return ReconcileResult.done()

    def _record_failure(
        self, store: RecordStore, cluster: ProxmoxCluster, exc: ValidationError
    ) -> ReconcileResult:
        LOG.error("invalid configuration for %s: %s", cluster.identity.key, exc)
        cluster.status.failure_reason = INVALID_CONFIGURATION
        cluster.status.failure_message = str(exc)
        self._write_status(store, cluster)
        # A spec change triggers the next pass, retrying would not help.
        return ReconcileResult.done()

    # ------------------------------------------------------------------
    # Normal path
    # ------------------------------------------------------------------
    def _reconcile_normal(
        self, store: RecordStore, cluster: ProxmoxCluster
    ) -> ReconcileResult:
        key = cluster.identity.key
        if cluster.parent_ref() is None:
            LOG.info("waiting for cluster controller to set an owner on %s", key)
            return ReconcileResult.after(self._config.requeue_after)

        parent = self._get_parent(store, cluster)
        if parent is None:
            LOG.info("owning cluster of %s not found yet", key)
            return ReconcileResult.after(self._config.requeue_after)
        if is_paused(cluster, parent):
            LOG.info("cluster %s is paused, skipping", key)
            return ReconcileResult.done()

        families = list(cluster.spec.configured_families())
        if not families:
            return self._reconcile_without_ipam(store, cluster)

        if cluster.pools_recorded() and not cluster.status.control_plane_endpoint.is_zero():
            return self._mark_ready(store, cluster)

        if cluster.add_finalizer(self._config.finalizer):
            LOG.debug("adding finalizer to %s", key)
            cluster = self._update(store, cluster)

        identity = cluster.identity
        pool_allocator = PoolAllocator(PoolProvider(store))
        endpoint_allocator = EndpointAllocator(ClaimProvider(store))

        try:
            for family, ip_config in families:
                ref = pool_allocator.ensure_pool(identity, family, ip_config)
                if cluster.status.pool_ref(family) != ref.name:
                    cluster.status.set_pool_ref(family, ref.name)
                    cluster.status.clear_failure()
                    cluster = self._write_status(store, cluster)
        except ValidationError as exc:
            return self._record_failure(store, cluster, exc)

        endpoint_family = EndpointAllocator.endpoint_family(cluster.spec)
        pool = PoolRef(cluster.status.pool_ref(endpoint_family), endpoint_family)
        address, resolved = endpoint_allocator.ensure_endpoint_address(identity, pool)
        if not resolved:
            LOG.info("waiting for control plane address of %s", key)
            return ReconcileResult.after(self._config.requeue_after)

        cluster.status.control_plane_endpoint = APIEndpoint(
            host=address.address, port=self._config.control_plane_endpoint_port
        )
        return self._mark_ready(store, cluster)

    def _reconcile_without_ipam(
        self, store: RecordStore, cluster: ProxmoxCluster
    ) -> ReconcileResult:
        endpoint = cluster.spec.control_plane_endpoint
        if not endpoint.host:
            LOG.debug(
                "cluster %s has no IP configuration and no endpoint, nothing to allocate",
                cluster.identity.key,
            )
            return ReconcileResult.done()
        try:
            validate_endpoint(endpoint)
        except ValidationError as exc:
            return self._record_failure(store, cluster, exc)
        cluster.status.control_plane_endpoint = APIEndpoint(
            host=endpoint.host,
            port=endpoint.port or self._config.control_plane_endpoint_port,
        )
        return self._mark_ready(store, cluster)

    # ------------------------------------------------------------------
    # Deletion path
    # ------------------------------------------------------------------
    def _reconcile_delete(
        self, store: RecordStore, cluster: ProxmoxCluster
    ) -> ReconcileResult:
        key = cluster.identity.key
        finalizer = self._config.finalizer
        if not cluster.has_finalizer(finalizer):
            LOG.debug("cluster %s has no finalizer of ours, leaving it alone", key)
            return ReconcileResult.done()

        parent = self._get_parent(store, cluster)
        if parent is not None:
            parent_meta = parent.get("metadata", {})
            if not parent_meta.get("deletionTimestamp"):
                LOG.info("deleting owning cluster %s/%s", cluster.namespace, parent_meta["name"])
                try:
                    store.delete(CAPI_CLUSTER, cluster.namespace, parent_meta["name"])
                except NotFoundError:
                    pass
            LOG.info("waiting for owning cluster of %s to be removed", key)
            return ReconcileResult.after(self._config.requeue_after)

        identity = cluster.identity
        claims = ClaimProvider(store)
        pools = PoolProvider(store)

        # Claims reference pools, they go first.
        pending_claims = claims.list_claims(identity)
        for claim in pending_claims:
            LOG.info("deleting address claim %s/%s", claim.namespace, claim.name)
            claims.delete_claim(claim.namespace, claim.name)
        if pending_claims and claims.list_claims(identity):
            LOG.info("waiting for address claims of %s to be removed", key)
            return ReconcileResult.after(self._config.requeue_after)

        pending_pools = pools.list_pools(identity)
        for pool in pending_pools:
            LOG.info("deleting %s pool %s/%s", pool.family.value, pool.namespace, pool.name)
            pools.delete_pool(pool.namespace, pool.name)
        if pending_pools and pools.list_pools(identity):
            LOG.info("waiting for pools of %s to be removed", key)
            return ReconcileResult.after(self._config.requeue_after)

        cluster.remove_finalizer(finalizer)
        self._update(store, cluster)
        LOG.info("released cluster %s", key)
        return ReconcileResult.done()
