"""Data structures for the Proxmox cluster IPAM controller.

These light-weight dataclasses describe the cluster records the controller
consumes (``ProxmoxCluster``), the IPAM records it produces (``InClusterIPPool``
and ``IPAddressClaim``) and the controller level knobs.  Records travel through
the store as plain Kubernetes style manifests; the helpers here convert between
manifests and typed views so the controller never pokes at nested dictionaries
directly.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple


CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
IP_FAMILY_LABEL = "ipam.cluster.x-k8s.io/ip-family"
PAUSED_ANNOTATION = "cluster.x-k8s.io/paused"

DEFAULT_FINALIZER = "proxmoxcluster.infrastructure.cluster.x-k8s.io"
DEFAULT_CONTROL_PLANE_PORT = 6443


def _int_or_raw(value: Any) -> Any:
    """Coerce user supplied numbers, keeping malformed input for validation."""

    if isinstance(value, bool):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return value


@dataclass(frozen=True)
class ResourceKind:
    """Addressing information for a record type in the store."""

    group: str
    version: str
    kind: str
    plural: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


PROXMOX_CLUSTER = ResourceKind(
    "infrastructure.cluster.x-k8s.io", "v1alpha1", "ProxmoxCluster", "proxmoxclusters"
)
CAPI_CLUSTER = ResourceKind("cluster.x-k8s.io", "v1beta1", "Cluster", "clusters")
IN_CLUSTER_IP_POOL = ResourceKind(
    "ipam.cluster.x-k8s.io", "v1alpha2", "InClusterIPPool", "inclusterippools"
)
IP_ADDRESS_CLAIM = ResourceKind(
    "ipam.cluster.x-k8s.io", "v1beta1", "IPAddressClaim", "ipaddressclaims"
)
IP_ADDRESS = ResourceKind("ipam.cluster.x-k8s.io", "v1beta1", "IPAddress", "ipaddresses")

KNOWN_KINDS: Tuple[ResourceKind, ...] = (
    PROXMOX_CLUSTER,
    CAPI_CLUSTER,
    IN_CLUSTER_IP_POOL,
    IP_ADDRESS_CLAIM,
    IP_ADDRESS,
)


class IPFamily(Enum):
    """IP families a cluster may request pools for.

    The value doubles as the suffix used for deterministic pool names and the
    ``ip-family`` label.  ``slot`` is the fixed index of the family in
    ``status.inClusterIpPoolRef``.
    """

    V4 = "v4"
    V6 = "v6"

    @property
    def slot(self) -> int:
        return 0 if self is IPFamily.V4 else 1

    @property
    def version(self) -> int:
        return 4 if self is IPFamily.V4 else 6

    @property
    def max_prefix(self) -> int:
        return 32 if self is IPFamily.V4 else 128


FAMILY_ORDER: Tuple[IPFamily, ...] = (IPFamily.V4, IPFamily.V6)


@dataclass(frozen=True)
class IPConfigSpec:
    """Address ranges, gateway and prefix configured for one IP family."""

    addresses: Sequence[str]
    gateway: str
    prefix: Any  # int once validated

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IPConfigSpec":
        return cls(
            addresses=tuple(str(a) for a in data.get("addresses") or ()),
            gateway=str(data.get("gateway", "")),
            prefix=_int_or_raw(data.get("prefix", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "addresses": list(self.addresses),
            "gateway": self.gateway,
            "prefix": self.prefix,
        }


@dataclass(frozen=True)
class APIEndpoint:
    """host:port pair clients use to reach the cluster API server."""

    host: str = ""
    port: Any = 0

    def is_zero(self) -> bool:
        return not self.host and not self.port

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "APIEndpoint":
        if not data:
            return cls()
        return cls(host=str(data.get("host", "")), port=_int_or_raw(data.get("port", 0)))

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port}


@dataclass(frozen=True)
class ClusterIdentity:
    """Stable identity of a ProxmoxCluster used to own IPAM records."""

    namespace: str
    name: str
    uid: str

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def owner_reference(self) -> Dict[str, Any]:
        return {
            "apiVersion": PROXMOX_CLUSTER.api_version,
            "kind": PROXMOX_CLUSTER.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def owns(self, manifest: Mapping[str, Any]) -> bool:
        """Return ``True`` when ``manifest`` carries an owner reference to us."""

        refs = manifest.get("metadata", {}).get("ownerReferences") or []
        return any(
            ref.get("kind") == PROXMOX_CLUSTER.kind and ref.get("uid") == self.uid
            for ref in refs
        )


@dataclass(frozen=True)
class ParentRef:
    """Owner reference to the higher level ``Cluster`` record."""

    name: str
    uid: Optional[str] = None


@dataclass(frozen=True)
class ClusterSpec:
    ipv4_config: Optional[IPConfigSpec] = None
    ipv6_config: Optional[IPConfigSpec] = None
    dns_servers: Sequence[str] = ()
    control_plane_endpoint: APIEndpoint = APIEndpoint()
    node_clone_spec: Mapping[str, Any] = field(default_factory=dict)

    def config_for(self, family: IPFamily) -> Optional[IPConfigSpec]:
        return self.ipv4_config if family is IPFamily.V4 else self.ipv6_config

    def configured_families(self) -> Iterator[Tuple[IPFamily, IPConfigSpec]]:
        """Yield configured families in the fixed ``[v4, v6]`` order."""

        for family in FAMILY_ORDER:
            config = self.config_for(family)
            if config is not None:
                yield family, config

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClusterSpec":
        ipv4 = data.get("ipv4Config")
        ipv6 = data.get("ipv6Config")
        return cls(
            ipv4_config=IPConfigSpec.from_dict(ipv4) if ipv4 else None,
            ipv6_config=IPConfigSpec.from_dict(ipv6) if ipv6 else None,
            dns_servers=tuple(data.get("dnsServers") or ()),
            control_plane_endpoint=APIEndpoint.from_dict(data.get("controlPlaneEndpoint")),
            node_clone_spec=dict(data.get("cloneSpec") or {}),
        )


@dataclass
class ClusterStatus:
    ready: bool = False
    in_cluster_ip_pool_ref: List[Optional[str]] = field(
        default_factory=lambda: [None] * len(FAMILY_ORDER)
    )
    control_plane_endpoint: APIEndpoint = APIEndpoint()
    failure_reason: Optional[str] = None
    failure_message: Optional[str] = None
    observed_generation: Optional[int] = None

    def pool_ref(self, family: IPFamily) -> Optional[str]:
        return self.in_cluster_ip_pool_ref[family.slot]

    def set_pool_ref(self, family: IPFamily, name: str) -> None:
        self.in_cluster_ip_pool_ref[family.slot] = name

    def clear_failure(self) -> None:
        self.failure_reason = None
        self.failure_message = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ClusterStatus":
        data = data or {}
        slots: List[Optional[str]] = [None] * len(FAMILY_ORDER)
        for index, ref in enumerate((data.get("inClusterIpPoolRef") or [])[: len(slots)]):
            if ref and ref.get("name"):
                slots[index] = str(ref["name"])
        return cls(
            ready=bool(data.get("ready", False)),
            in_cluster_ip_pool_ref=slots,
            control_plane_endpoint=APIEndpoint.from_dict(data.get("controlPlaneEndpoint")),
            failure_reason=data.get("failureReason"),
            failure_message=data.get("failureMessage"),
            observed_generation=data.get("observedGeneration"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ready": self.ready}
        if any(self.in_cluster_ip_pool_ref):
            # Kubernetes has no null list items; an empty reference marks a
            # slot whose pool has not been created yet.
            data["inClusterIpPoolRef"] = [
                {"name": name} if name else {} for name in self.in_cluster_ip_pool_ref
            ]
        if not self.control_plane_endpoint.is_zero():
            data["controlPlaneEndpoint"] = self.control_plane_endpoint.to_dict()
        if self.failure_reason:
            data["failureReason"] = self.failure_reason
        if self.failure_message:
            data["failureMessage"] = self.failure_message
        if self.observed_generation is not None:
            data["observedGeneration"] = self.observed_generation
        return data


_MODELLED_STATUS_KEYS = frozenset(
    {
        "ready",
        "inClusterIpPoolRef",
        "controlPlaneEndpoint",
        "failureReason",
        "failureMessage",
        "observedGeneration",
    }
)


@dataclass
class ProxmoxCluster:
    """Typed view over a ``ProxmoxCluster`` manifest.

    ``raw`` keeps the manifest as read from the store so fields we do not
    model (labels, managed fields, ...) survive a round trip through
    :meth:`to_manifest`.
    """

    raw: Dict[str, Any]
    spec: ClusterSpec
    status: ClusterStatus
    finalizers: List[str]

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any]) -> "ProxmoxCluster":
        raw = copy.deepcopy(dict(manifest))
        metadata = raw.setdefault("metadata", {})
        return cls(
            raw=raw,
            spec=ClusterSpec.from_dict(raw.get("spec") or {}),
            status=ClusterStatus.from_dict(raw.get("status")),
            finalizers=list(metadata.get("finalizers") or []),
        )

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.raw["metadata"]

    @property
    def name(self) -> str:
        return self.metadata["name"]

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace", "default")

    @property
    def generation(self) -> Optional[int]:
        return self.metadata.get("generation")

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp")

    @property
    def identity(self) -> ClusterIdentity:
        return ClusterIdentity(self.namespace, self.name, str(self.metadata.get("uid", "")))

    @property
    def annotations(self) -> Mapping[str, str]:
        return self.metadata.get("annotations") or {}

    def parent_ref(self) -> Optional[ParentRef]:
        """Return the owner reference to the CAPI ``Cluster`` if one is set."""

        for ref in self.metadata.get("ownerReferences") or []:
            if ref.get("kind") != CAPI_CLUSTER.kind:
                continue
            if str(ref.get("apiVersion", "")).split("/")[0] != CAPI_CLUSTER.group:
                continue
            return ParentRef(name=ref["name"], uid=ref.get("uid"))
        return None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in self.finalizers

    def add_finalizer(self, finalizer: str) -> bool:
        if finalizer in self.finalizers:
            return False
        self.finalizers.append(finalizer)
        return True

    def remove_finalizer(self, finalizer: str) -> bool:
        if finalizer not in self.finalizers:
            return False
        self.finalizers.remove(finalizer)
        return True

    def pools_recorded(self) -> bool:
        """Return ``True`` when every configured family has a status slot."""

        return all(
            self.status.pool_ref(family) for family, _ in self.spec.configured_families()
        )

    def _merged_status(self) -> Dict[str, Any]:
        # Conditions and other fields written by other controllers are kept.
        status = {
            key: value
            for key, value in copy.deepcopy(self.raw.get("status") or {}).items()
            if key not in _MODELLED_STATUS_KEYS
        }
        status.update(self.status.to_dict())
        return status

    def status_changed(self) -> bool:
        return self._merged_status() != (self.raw.get("status") or {})

    def to_manifest(self) -> Dict[str, Any]:
        manifest = copy.deepcopy(self.raw)
        metadata = manifest.setdefault("metadata", {})
        if self.finalizers:
            metadata["finalizers"] = list(self.finalizers)
        else:
            metadata.pop("finalizers", None)
        manifest["status"] = self._merged_status()
        return manifest


@dataclass(frozen=True)
class PoolRef:
    """Reference to an ``InClusterIPPool`` by name."""

    name: str
    family: IPFamily


@dataclass(frozen=True)
class AddressPool:
    name: str
    namespace: str
    family: IPFamily
    addresses: Sequence[str]
    gateway: str
    prefix: int

    @property
    def ref(self) -> PoolRef:
        return PoolRef(self.name, self.family)

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any], family: IPFamily) -> "AddressPool":
        metadata = manifest.get("metadata", {})
        spec = manifest.get("spec") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace", "default"),
            family=family,
            addresses=tuple(spec.get("addresses") or ()),
            gateway=str(spec.get("gateway", "")),
            prefix=int(spec.get("prefix", 0)),
        )


@dataclass(frozen=True)
class AddressClaim:
    name: str
    namespace: str
    pool_name: str
    address_ref: Optional[str] = None

    @classmethod
    def from_manifest(cls, manifest: Mapping[str, Any]) -> "AddressClaim":
        metadata = manifest.get("metadata", {})
        pool_ref = (manifest.get("spec") or {}).get("poolRef") or {}
        address_ref = ((manifest.get("status") or {}).get("addressRef") or {}).get("name")
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace", "default"),
            pool_name=str(pool_ref.get("name", "")),
            address_ref=address_ref or None,
        )


@dataclass(frozen=True)
class ResolvedAddress:
    """Concrete address handed out by the IPAM provider for a claim."""

    address: str
    prefix: int
    gateway: str


@dataclass(frozen=True)
class ControllerConfig:
    """Controller level configuration knobs."""

    control_plane_endpoint_port: int = DEFAULT_CONTROL_PLANE_PORT
    finalizer: str = DEFAULT_FINALIZER
    requeue_after: float = 10.0
    reconcile_timeout: float = 30.0

    def with_overrides(self, **overrides: Any) -> "ControllerConfig":
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values)
