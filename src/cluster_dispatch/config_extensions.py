"""oslo.config options for embedding the IPAM controller in a service.

Services that already use oslo.config can register these options, point the
service at its usual configuration files and build a
:class:`~proxmox_ipam.config.ControllerConfig` from the ``[proxmox_ipam]``
group instead of using the YAML agent configuration.
"""

from __future__ import annotations

from typing import Optional, Sequence

from oslo_config import cfg

from proxmox_ipam.config import (
    DEFAULT_CONTROL_PLANE_PORT,
    DEFAULT_FINALIZER,
    ControllerConfig,
)

GROUP = "proxmox_ipam"

ipam_opts = [
    cfg.PortOpt('control_plane_endpoint_port',
                default=DEFAULT_CONTROL_PLANE_PORT,
                help='Port written into the control plane endpoint once an '
                     'address has been claimed for a cluster.'),
    cfg.StrOpt('finalizer',
               default=DEFAULT_FINALIZER,
               help='Finalizer placed on ProxmoxCluster records while IPAM '
                    'records owned by them exist.'),
    cfg.FloatOpt('requeue_after',
                 default=10.0,
                 min=0.0,
                 help='Seconds to wait before re-checking a cluster that is '
                      'waiting on an external event.'),
    cfg.FloatOpt('reconcile_timeout',
                 default=30.0,
                 min=0.0,
                 help='Upper bound in seconds for a single reconcile pass.'),
    cfg.StrOpt('kubeconfig',
               default=None,
               help='Path to a kubeconfig file. In-cluster credentials are '
                    'used when unset.'),
]

_CONTROLLER_FIELDS = (
    "control_plane_endpoint_port",
    "finalizer",
    "requeue_after",
    "reconcile_timeout",
)


def register_ipam_opts(conf: Optional[cfg.ConfigOpts] = None) -> cfg.ConfigOpts:
    """Register the IPAM options on ``conf`` (the global ``CONF`` by default)."""

    conf = conf if conf is not None else cfg.CONF
    conf.register_opts(ipam_opts, group=GROUP)
    return conf


def load_conf(
    config_files: Sequence[str],
    defaults: Optional[ControllerConfig] = None,
) -> cfg.ConfigOpts:
    """Build a private ``ConfigOpts`` populated from ``config_files``.

    Values from ``defaults`` apply to every option the files leave unset.
    """

    conf = register_ipam_opts(cfg.ConfigOpts())
    if defaults is not None:
        for name in _CONTROLLER_FIELDS:
            conf.set_default(name, getattr(defaults, name), group=GROUP)
    conf(args=[], project="proxmox-ipam", default_config_files=list(config_files))
    return conf


def controller_config_from_conf(conf: Optional[cfg.ConfigOpts] = None) -> ControllerConfig:
    """Build a controller configuration from the ``[proxmox_ipam]`` group."""

    conf = conf if conf is not None else cfg.CONF
    group = conf[GROUP]
    return ControllerConfig().with_overrides(
        **{name: getattr(group, name) for name in _CONTROLLER_FIELDS}
    )
