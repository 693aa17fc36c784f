"""Kubernetes backed :class:`~proxmox_ipam.store.RecordStore`."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .config import ResourceKind
from .store import (
    AlreadyExistsError,
    ConflictError,
    Manifest,
    NotFoundError,
    RecordStore,
    StoreError,
)

LOG = logging.getLogger(__name__)


def load_api_client(kubeconfig: Optional[str] = None) -> client.ApiClient:
    """Build an API client from the in-cluster service account or kubeconfig."""

    if kubeconfig is None:
        try:
            config.load_incluster_config()
            LOG.debug("using in-cluster kubernetes configuration")
            return client.ApiClient()
        except config.ConfigException:
            LOG.debug("not running in-cluster, falling back to kubeconfig")
    config.load_kube_config(config_file=kubeconfig)
    return client.ApiClient()


def _label_selector(labels: Optional[Mapping[str, str]]) -> str:
    if not labels:
        return ""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def _describe(kind: ResourceKind, namespace: Optional[str], name: Optional[str]) -> str:
    return f"{kind.kind} {namespace or '*'}/{name or '*'}"


class KubernetesStore(RecordStore):
    """Read and write custom resources through ``CustomObjectsApi``.

    ``request_timeout`` bounds every HTTP request so a stuck API server cannot
    hold a reconcile pass past its deadline.
    """

    def __init__(
        self,
        api: Optional[client.CustomObjectsApi] = None,
        *,
        request_timeout: Optional[float] = 10.0,
    ) -> None:
        self._api = api or client.CustomObjectsApi()
        self._request_timeout = request_timeout

    def _kwargs(self) -> Dict[str, Any]:
        if self._request_timeout is None:
            return {}
        return {"_request_timeout": self._request_timeout}

    @staticmethod
    def _translate(
        exc: ApiException,
        kind: ResourceKind,
        namespace: Optional[str],
        name: Optional[str],
        *,
        creating: bool = False,
    ) -> StoreError:
        what = _describe(kind, namespace, name)
        if exc.status == 404:
            return NotFoundError(f"{what} not found")
        if exc.status == 409:
            if creating:
                return AlreadyExistsError(f"{what} already exists")
            return ConflictError(f"{what} was modified concurrently: {exc.reason}")
        return StoreError(f"{what}: API error {exc.status} {exc.reason}")

    def get(self, kind: ResourceKind, namespace: str, name: str) -> Manifest:
        try:
            return self._api.get_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name, **self._kwargs()
            )
        except ApiException as exc:
            raise self._translate(exc, kind, namespace, name) from exc

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Manifest]:
        kwargs = self._kwargs()
        selector = _label_selector(labels)
        if selector:
            kwargs["label_selector"] = selector
        try:
            if namespace is None:
                result = self._api.list_cluster_custom_object(
                    kind.group, kind.version, kind.plural, **kwargs
                )
            else:
                result = self._api.list_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, **kwargs
                )
        except ApiException as exc:
            raise self._translate(exc, kind, namespace, None) from exc
        return list(result.get("items") or [])

    def create(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        body = dict(manifest)
        body.setdefault("apiVersion", kind.api_version)
        body.setdefault("kind", kind.kind)
        metadata = body.get("metadata") or {}
        namespace = metadata.get("namespace", "default")
        try:
            return self._api.create_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, body, **self._kwargs()
            )
        except ApiException as exc:
            raise self._translate(
                exc, kind, namespace, metadata.get("name"), creating=True
            ) from exc

    def update(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        metadata = manifest.get("metadata") or {}
        namespace = metadata.get("namespace", "default")
        name = metadata["name"]
        try:
            return self._api.replace_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name, dict(manifest),
                **self._kwargs()
            )
        except ApiException as exc:
            raise self._translate(exc, kind, namespace, name) from exc

    def update_status(self, kind: ResourceKind, manifest: Mapping[str, Any]) -> Manifest:
        metadata = manifest.get("metadata") or {}
        namespace = metadata.get("namespace", "default")
        name = metadata["name"]
        try:
            return self._api.replace_namespaced_custom_object_status(
                kind.group, kind.version, namespace, kind.plural, name, dict(manifest),
                **self._kwargs()
            )
        except ApiException as exc:
            raise self._translate(exc, kind, namespace, name) from exc

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        try:
            self._api.delete_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name, **self._kwargs()
            )
        except ApiException as exc:
            raise self._translate(exc, kind, namespace, name) from exc
