"""Thin providers over the record store for pools, claims and addresses."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .config import (
    CLUSTER_NAME_LABEL,
    IN_CLUSTER_IP_POOL,
    IP_ADDRESS,
    IP_ADDRESS_CLAIM,
    IP_FAMILY_LABEL,
    AddressClaim,
    AddressPool,
    ClusterIdentity,
    IPConfigSpec,
    IPFamily,
    PoolRef,
    ResolvedAddress,
)
from .store import AlreadyExistsError, NotFoundError, RecordStore, StoreError

LOG = logging.getLogger(__name__)


class OwnershipConflictError(StoreError):
    """A record with our deterministic name belongs to another cluster."""


def pool_name(cluster_name: str, family: IPFamily) -> str:
    return f"{cluster_name}-{family.value}-icip"


def claim_name(cluster_name: str) -> str:
    return cluster_name


def _owned_metadata(
    identity: ClusterIdentity, name: str, family: IPFamily
) -> Dict[str, Any]:
    return {
        "name": name,
        "namespace": identity.namespace,
        "labels": {
            CLUSTER_NAME_LABEL: identity.name,
            IP_FAMILY_LABEL: family.value,
        },
        "ownerReferences": [identity.owner_reference()],
    }


def _family_of(manifest: Dict[str, Any]) -> IPFamily:
    labels = (manifest.get("metadata") or {}).get("labels") or {}
    try:
        return IPFamily(labels.get(IP_FAMILY_LABEL, IPFamily.V4.value))
    except ValueError:
        return IPFamily.V4


class PoolProvider:
    """Create and look up ``InClusterIPPool`` records owned by a cluster."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def get_pool(self, identity: ClusterIdentity, family: IPFamily) -> AddressPool:
        """Return the pool for ``family`` or raise :class:`NotFoundError`."""

        name = pool_name(identity.name, family)
        manifest = self._store.get(IN_CLUSTER_IP_POOL, identity.namespace, name)
        if not identity.owns(manifest):
            raise OwnershipConflictError(
                f"pool {identity.namespace}/{name} is not owned by {identity.key}"
            )
        return AddressPool.from_manifest(manifest, family)

    def create_pool(
        self, identity: ClusterIdentity, family: IPFamily, config: IPConfigSpec
    ) -> AddressPool:
        name = pool_name(identity.name, family)
        manifest = {
            "apiVersion": IN_CLUSTER_IP_POOL.api_version,
            "kind": IN_CLUSTER_IP_POOL.kind,
            "metadata": _owned_metadata(identity, name, family),
            "spec": config.to_dict(),
        }
        try:
            created = self._store.create(IN_CLUSTER_IP_POOL, manifest)
        except AlreadyExistsError:
            LOG.debug("pool %s/%s already exists, reusing it", identity.namespace, name)
            return self.get_pool(identity, family)
        LOG.info("created %s pool %s/%s", family.value, identity.namespace, name)
        return AddressPool.from_manifest(created, family)

    def list_pools(self, identity: ClusterIdentity) -> List[AddressPool]:
        manifests = self._store.list(
            IN_CLUSTER_IP_POOL,
            namespace=identity.namespace,
            labels={CLUSTER_NAME_LABEL: identity.name},
        )
        return [
            AddressPool.from_manifest(manifest, _family_of(manifest))
            for manifest in manifests
            if identity.owns(manifest)
        ]

    def delete_pool(self, namespace: str, name: str) -> None:
        try:
            self._store.delete(IN_CLUSTER_IP_POOL, namespace, name)
        except NotFoundError:
            LOG.debug("pool %s/%s already gone", namespace, name)


class ClaimProvider:
    """Create ``IPAddressClaim`` records and read back what the IPAM provider assigned."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def get_claim(self, identity: ClusterIdentity) -> AddressClaim:
        name = claim_name(identity.name)
        manifest = self._store.get(IP_ADDRESS_CLAIM, identity.namespace, name)
        if not identity.owns(manifest):
            raise OwnershipConflictError(
                f"claim {identity.namespace}/{name} is not owned by {identity.key}"
            )
        return AddressClaim.from_manifest(manifest)

    def create_claim(self, identity: ClusterIdentity, pool: PoolRef) -> AddressClaim:
        name = claim_name(identity.name)
        manifest = {
            "apiVersion": IP_ADDRESS_CLAIM.api_version,
            "kind": IP_ADDRESS_CLAIM.kind,
            "metadata": _owned_metadata(identity, name, pool.family),
            "spec": {
                "poolRef": {
                    "apiGroup": IN_CLUSTER_IP_POOL.group,
                    "kind": IN_CLUSTER_IP_POOL.kind,
                    "name": pool.name,
                }
            },
        }
        try:
            created = self._store.create(IP_ADDRESS_CLAIM, manifest)
        except AlreadyExistsError:
            LOG.debug("claim %s/%s already exists, reusing it", identity.namespace, name)
            return self.get_claim(identity)
        LOG.info(
            "created address claim %s/%s from pool %s", identity.namespace, name, pool.name
        )
        return AddressClaim.from_manifest(created)

    def resolve(self, claim: AddressClaim) -> Optional[ResolvedAddress]:
        """Return the address bound to ``claim`` or ``None`` while it is pending."""

        name = claim.address_ref or claim.name
        try:
            manifest = self._store.get(IP_ADDRESS, claim.namespace, name)
        except NotFoundError:
            return None
        spec = manifest.get("spec") or {}
        address = spec.get("address")
        if not address:
            return None
        return ResolvedAddress(
            address=str(address),
            prefix=int(spec.get("prefix", 0)),
            gateway=str(spec.get("gateway", "")),
        )

    def list_claims(self, identity: ClusterIdentity) -> List[AddressClaim]:
        manifests = self._store.list(
            IP_ADDRESS_CLAIM,
            namespace=identity.namespace,
            labels={CLUSTER_NAME_LABEL: identity.name},
        )
        return [
            AddressClaim.from_manifest(manifest)
            for manifest in manifests
            if identity.owns(manifest)
        ]

    def delete_claim(self, namespace: str, name: str) -> None:
        try:
            self._store.delete(IP_ADDRESS_CLAIM, namespace, name)
        except NotFoundError:
            LOG.debug("claim %s/%s already gone", namespace, name)
