"""Handler adapters exposed to the registry."""

from .base import ClusterHandler  # noqa: F401
from .ipam_adapter import IPAMHandlerAdapter, build_ipam_handler  # noqa: F401

__all__ = [
    "ClusterHandler",
    "IPAMHandlerAdapter",
    "build_ipam_handler",
]
