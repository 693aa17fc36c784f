"""File-based cluster watcher for lab setups.

The watched file holds Kubernetes style manifests (a YAML/JSON list, a
``{"items": [...]}`` mapping or a multi-document YAML stream).  Every poll
applies the file to an :class:`~proxmox_ipam.store.InMemoryStore` and then
publishes reconcile events for all ProxmoxClusters in the store.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from threading import Event, Thread
from typing import Any, Dict, List, Tuple

import yaml

from cluster_dispatch import HandlerRegistry
from proxmox_ipam.config import KNOWN_KINDS, PROXMOX_CLUSTER, ResourceKind
from proxmox_ipam.store import InMemoryStore, NotFoundError

from .utils import ClusterTracker, cluster_key

LOG = logging.getLogger(__name__)

RecordKey = Tuple[str, str, str]

_KINDS_BY_NAME: Dict[str, ResourceKind] = {kind.kind: kind for kind in KNOWN_KINDS}
_DESIRED_METADATA = ("labels", "annotations", "ownerReferences")


def load_manifests(text: str) -> List[Dict[str, Any]]:
    manifests: List[Dict[str, Any]] = []
    for document in yaml.safe_load_all(text):
        if document is None:
            continue
        if isinstance(document, dict) and "items" in document:
            document = document["items"] or []
        if isinstance(document, dict):
            document = [document]
        if not isinstance(document, list):
            raise ValueError("manifest file must contain mappings or lists of mappings")
        for manifest in document:
            if not isinstance(manifest, dict):
                raise ValueError("every manifest must be a mapping")
            manifests.append(manifest)
    return manifests


def _desired_state(manifest: Dict[str, Any]) -> Dict[str, Any]:
    metadata = manifest.get("metadata") or {}
    return {
        "metadata": {key: copy.deepcopy(metadata.get(key)) for key in _DESIRED_METADATA},
        "spec": copy.deepcopy(manifest.get("spec")),
        "status": copy.deepcopy(manifest.get("status")),
    }


class FileClusterWatcher(Thread):
    """Poll a manifest file, mirror it into a store and publish cluster events."""

    def __init__(
        self,
        registry: HandlerRegistry,
        store: InMemoryStore,
        path: Path,
        interval: float,
        stop_event: Event,
    ) -> None:
        super().__init__(daemon=True)
        self._store = store
        self._path = Path(path)
        self._interval = interval
        self._stop_event = stop_event
        self._tracker = ClusterTracker(registry)
        self._applied: Dict[RecordKey, Dict[str, Any]] = {}

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except Exception:  # pragma: no cover - logged below
                LOG.exception("file watcher encountered an error")
            self._stop_event.wait(self._interval)

    def poll(self) -> None:
        if not self._path.exists():
            LOG.debug("manifest file %s does not exist yet", self._path)
        else:
            try:
                manifests = load_manifests(self._path.read_text())
            except (yaml.YAMLError, ValueError) as exc:
                LOG.warning("invalid manifest file %s: %s", self._path, exc)
            else:
                self._apply(manifests)

        clusters = self._store.list(PROXMOX_CLUSTER)
        self._tracker.update(cluster_key(manifest) for manifest in clusters)

    # ------------------------------------------------------------------
    # Applying the file to the store
    # ------------------------------------------------------------------
    def _apply(self, manifests: List[Dict[str, Any]]) -> None:
        seen: Dict[RecordKey, Tuple[ResourceKind, Dict[str, Any]]] = {}
        for manifest in manifests:
            kind = _KINDS_BY_NAME.get(str(manifest.get("kind")))
            if kind is None:
                LOG.warning("ignoring manifest of unknown kind %r", manifest.get("kind"))
                continue
            metadata = manifest.setdefault("metadata", {})
            if not metadata.get("name"):
                LOG.warning("ignoring %s manifest without a name", kind.kind)
                continue
            metadata.setdefault("namespace", "default")
            seen[(kind.kind, metadata["namespace"], metadata["name"])] = (kind, manifest)

        for key, (kind, manifest) in seen.items():
            desired = _desired_state(manifest)
            previous = self._applied.get(key)
            if previous is None:
                self._create(kind, manifest)
            elif previous != desired:
                self._update(kind, manifest)
            self._applied[key] = desired

        for key in set(self._applied) - set(seen):
            kind_name, namespace, name = key
            LOG.debug("%s %s/%s removed from %s", kind_name, namespace, name, self._path)
            try:
                self._store.delete(_KINDS_BY_NAME[kind_name], namespace, name)
            except NotFoundError:
                pass
            del self._applied[key]

    def _create(self, kind: ResourceKind, manifest: Dict[str, Any]) -> None:
        metadata = manifest["metadata"]
        try:
            self._store.get(kind, metadata["namespace"], metadata["name"])
        except NotFoundError:
            created = self._store.create(kind, manifest)
            if manifest.get("status") and kind is not PROXMOX_CLUSTER:
                created["status"] = copy.deepcopy(manifest["status"])
                self._store.update_status(kind, created)
            LOG.debug("%s %s/%s loaded", kind.kind, metadata["namespace"], metadata["name"])
        else:
            self._update(kind, manifest)

    def _update(self, kind: ResourceKind, manifest: Dict[str, Any]) -> None:
        metadata = manifest["metadata"]
        try:
            current = self._store.get(kind, metadata["namespace"], metadata["name"])
        except NotFoundError:
            # Deleted by a controller; the file does not resurrect records.
            return
        for key in _DESIRED_METADATA:
            if metadata.get(key):
                current["metadata"][key] = copy.deepcopy(metadata[key])
            else:
                current["metadata"].pop(key, None)
        if "spec" in manifest:
            current["spec"] = copy.deepcopy(manifest["spec"])
        current = self._store.update(kind, current)
        # Controllers own ProxmoxCluster status; for the other kinds the file
        # stands in for the IPAM provider.
        if manifest.get("status") and kind is not PROXMOX_CLUSTER:
            current["status"] = copy.deepcopy(manifest["status"])
            self._store.update_status(kind, current)
        LOG.debug("%s %s/%s updated", kind.kind, metadata["namespace"], metadata["name"])
