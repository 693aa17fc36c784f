"""Record storage interface used by the controller.

The controller never talks to Kubernetes directly; it reads and writes plain
manifests through :class:`RecordStore`.  :class:`InMemoryStore` mimics the
bits of API server behaviour the controller depends on (resource versions,
generations, finalizer gated deletion) and backs the lab agent and the unit
tests.  :mod:`proxmox_ipam.kube` provides the real implementation.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import ResourceKind

LOG = logging.getLogger(__name__)

Manifest = Dict[str, Any]


class StoreError(RuntimeError):
    """Transient failure talking to the record store."""


class NotFoundError(StoreError):
    """The requested record does not exist."""


class AlreadyExistsError(StoreError):
    """A record with the same name already exists."""


class ConflictError(StoreError):
    """The write was based on a stale ``resourceVersion``."""


def _metadata(manifest: Mapping[str, Any]) -> Mapping[str, Any]:
    return manifest.get("metadata") or {}


def labels_match(manifest: Mapping[str, Any], selector: Optional[Mapping[str, str]]) -> bool:
    if not selector:
        return True
    labels = _metadata(manifest).get("labels") or {}
    return all(labels.get(key) == value for key, value in selector.items())


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class RecordStore(ABC):
    """CRUD access to namespaced records with optimistic concurrency."""

    @abstractmethod
    def get(self, kind: ResourceKind, namespace: str, name: str) -> Manifest:
        """Return the record or raise :class:`NotFoundError`."""

    @abstractmethod
    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Manifest]:
        """Return all records of ``kind`` matching the label selector."""

    @abstractmethod
    def create(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        """Create a record, raising :class:`AlreadyExistsError` on name clashes."""

    @abstractmethod
    def update(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        """Replace metadata and spec of an existing record."""

    @abstractmethod
    def update_status(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        """Replace the status subresource of an existing record."""

    @abstractmethod
    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        """Request deletion of a record."""


class InMemoryStore(RecordStore):
    """Thread-safe dictionary backed store with API server like semantics."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: Dict[Tuple[str, str, str], Manifest] = {}
        self._versions = itertools.count(1)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _key(kind: ResourceKind, namespace: str, name: str) -> Tuple[str, str, str]:
        return (kind.plural, namespace, name)

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _lookup(self, kind: ResourceKind, namespace: str, name: str) -> Manifest:
        try:
            return self._records[self._key(kind, namespace, name)]
        except KeyError:
            raise NotFoundError(f"{kind.kind} {namespace}/{name} not found") from None

    @staticmethod
    def _identify(manifest: Mapping[str, Any]) -> Tuple[str, str]:
        metadata = _metadata(manifest)
        name = metadata.get("name")
        if not name:
            raise ValueError("manifest is missing metadata.name")
        return metadata.get("namespace", "default"), name

    @staticmethod
    def _check_version(current: Manifest, manifest: Mapping[str, Any]) -> None:
        wanted = _metadata(manifest).get("resourceVersion")
        if wanted and wanted != current["metadata"]["resourceVersion"]:
            raise ConflictError(
                "resourceVersion %s is stale (current %s)"
                % (wanted, current["metadata"]["resourceVersion"])
            )

    def _finalize_if_released(self, kind: ResourceKind, record: Manifest) -> bool:
        metadata = record["metadata"]
        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            del self._records[self._key(kind, metadata["namespace"], metadata["name"])]
            LOG.debug("%s %s/%s removed", kind.kind, metadata["namespace"], metadata["name"])
            return True
        return False

    # ------------------------------------------------------------------
    # RecordStore API
    # ------------------------------------------------------------------
    def get(self, kind: ResourceKind, namespace: str, name: str) -> Manifest:
        with self._lock:
            return copy.deepcopy(self._lookup(kind, namespace, name))

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Manifest]:
        with self._lock:
            found = [
                copy.deepcopy(record)
                for (plural, ns, _), record in sorted(self._records.items())
                if plural == kind.plural
                and (namespace is None or ns == namespace)
                and labels_match(record, labels)
            ]
        return found

    def create(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        namespace, name = self._identify(manifest)
        with self._lock:
            key = self._key(kind, namespace, name)
            if key in self._records:
                raise AlreadyExistsError(f"{kind.kind} {namespace}/{name} already exists")
            record = copy.deepcopy(dict(manifest))
            record["apiVersion"] = kind.api_version
            record["kind"] = kind.kind
            metadata = record.setdefault("metadata", {})
            metadata["namespace"] = namespace
            metadata.setdefault("uid", str(uuid.uuid4()))
            metadata["generation"] = 1
            metadata["resourceVersion"] = self._next_version()
            metadata["creationTimestamp"] = _now()
            metadata.pop("deletionTimestamp", None)
            self._records[key] = record
            LOG.debug("%s %s/%s created", kind.kind, namespace, name)
            return copy.deepcopy(record)

    def update(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        namespace, name = self._identify(manifest)
        with self._lock:
            current = self._lookup(kind, namespace, name)
            self._check_version(current, manifest)
            incoming = _metadata(manifest)
            metadata = current["metadata"]
            for field_name in ("labels", "annotations", "finalizers", "ownerReferences"):
                if incoming.get(field_name):
                    metadata[field_name] = copy.deepcopy(incoming[field_name])
                else:
                    metadata.pop(field_name, None)
            spec = manifest.get("spec")
            if spec is not None and spec != current.get("spec"):
                current["spec"] = copy.deepcopy(spec)
                metadata["generation"] = metadata.get("generation", 1) + 1
            metadata["resourceVersion"] = self._next_version()
            snapshot = copy.deepcopy(current)
            self._finalize_if_released(kind, current)
            return snapshot

    def update_status(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        namespace, name = self._identify(manifest)
        with self._lock:
            current = self._lookup(kind, namespace, name)
            self._check_version(current, manifest)
            current["status"] = copy.deepcopy(manifest.get("status") or {})
            current["metadata"]["resourceVersion"] = self._next_version()
            return copy.deepcopy(current)

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        with self._lock:
            current = self._lookup(kind, namespace, name)
            metadata = current["metadata"]
            if metadata.get("finalizers"):
                if not metadata.get("deletionTimestamp"):
                    metadata["deletionTimestamp"] = _now()
                    metadata["resourceVersion"] = self._next_version()
                    LOG.debug(
                        "%s %s/%s marked for deletion", kind.kind, namespace, name
                    )
                return
            del self._records[self._key(kind, namespace, name)]
            LOG.debug("%s %s/%s deleted", kind.kind, namespace, name)
