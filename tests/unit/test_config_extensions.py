from pathlib import Path

import pytest
from oslo_config import cfg

from cluster_dispatch.config_extensions import (
    GROUP,
    controller_config_from_conf,
    load_conf,
    register_ipam_opts,
)
from proxmox_ipam.config import DEFAULT_FINALIZER, ControllerConfig


def test_file_values_override_defaults(tmp_path: Path):
    conf_file = tmp_path / "ipam.conf"
    conf_file.write_text(
        "[proxmox_ipam]\n"
        "control_plane_endpoint_port = 8443\n"
        "kubeconfig = /etc/kube/config\n"
    )

    conf = load_conf([str(conf_file)], defaults=ControllerConfig(requeue_after=3.0))
    controller = controller_config_from_conf(conf)

    assert controller.control_plane_endpoint_port == 8443
    assert controller.requeue_after == pytest.approx(3.0)
    assert controller.finalizer == DEFAULT_FINALIZER
    assert conf[GROUP].kubeconfig == "/etc/kube/config"


def test_registered_defaults_match_controller_defaults():
    conf = register_ipam_opts(cfg.ConfigOpts())
    conf(args=[], default_config_files=[])

    assert controller_config_from_conf(conf) == ControllerConfig()


def test_invalid_port_is_rejected(tmp_path: Path):
    conf_file = tmp_path / "ipam.conf"
    conf_file.write_text("[proxmox_ipam]\ncontrol_plane_endpoint_port = 70000\n")
    conf = load_conf([str(conf_file)])

    with pytest.raises(ValueError):
        controller_config_from_conf(conf)
