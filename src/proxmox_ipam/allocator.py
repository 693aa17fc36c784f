"""Pool and control-plane endpoint allocation for a single cluster."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from .config import ClusterIdentity, ClusterSpec, IPConfigSpec, IPFamily, PoolRef, ResolvedAddress
from .providers import ClaimProvider, PoolProvider
from .store import NotFoundError
from .validation import validate_ip_config

LOG = logging.getLogger(__name__)


class PoolAllocator:
    """Ensure exactly one ``InClusterIPPool`` per (cluster, family).

    Pools are create-once: when a pool already exists it is returned as is,
    even if the cluster's IP configuration has changed since.  Configuration is
    only validated right before a pool is created.
    """

    def __init__(self, pools: PoolProvider) -> None:
        self._pools = pools

    def ensure_pool(
        self, identity: ClusterIdentity, family: IPFamily, config: IPConfigSpec
    ) -> PoolRef:
        try:
            pool = self._pools.get_pool(identity, family)
        except NotFoundError:
            pass
        else:
            LOG.debug("%s pool %s for %s already exists", family.value, pool.name, identity.key)
            return pool.ref

        validate_ip_config(family, config)
        return self._pools.create_pool(identity, family, config).ref


class EndpointAllocator:
    """Claim a single address to serve as the control-plane endpoint."""

    def __init__(self, claims: ClaimProvider) -> None:
        self._claims = claims

    @staticmethod
    def endpoint_family(spec: ClusterSpec) -> Optional[IPFamily]:
        """IPv4 wins when configured, IPv6 otherwise."""

        for family, _ in spec.configured_families():
            return family
        return None

    def ensure_endpoint_address(
        self, identity: ClusterIdentity, pool: PoolRef
    ) -> Tuple[Optional[ResolvedAddress], bool]:
        try:
            claim = self._claims.get_claim(identity)
        except NotFoundError:
            self._claims.create_claim(identity, pool)
            return None, False

        if claim.pool_name != pool.name:
            LOG.warning(
                "endpoint claim %s/%s references pool %s, expected %s",
                claim.namespace,
                claim.name,
                claim.pool_name,
                pool.name,
            )

        resolved = self._claims.resolve(claim)
        if resolved is None:
            LOG.debug("endpoint claim %s/%s not resolved yet", claim.namespace, claim.name)
            return None, False
        return resolved, True
