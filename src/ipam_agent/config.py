"""YAML configuration loader for the IPAM agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import yaml

from proxmox_ipam.config import ControllerConfig

STORE_TYPES = ("memory", "kubernetes")


@dataclass
class StoreConfig:
    type: str = "memory"
    kubeconfig: Optional[Path] = None
    request_timeout: Optional[float] = 10.0


@dataclass
class WatcherConfig:
    type: str
    path: Path
    interval: float = 5.0
    options: dict = field(default_factory=dict)


@dataclass
class AgentConfig:
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    watchers: Sequence[WatcherConfig] = field(default_factory=list)


def _parse_controller(section: dict) -> ControllerConfig:
    defaults = ControllerConfig()
    return ControllerConfig(
        control_plane_endpoint_port=int(
            section.get("control_plane_endpoint_port", defaults.control_plane_endpoint_port)
        ),
        finalizer=str(section.get("finalizer", defaults.finalizer)),
        requeue_after=float(section.get("requeue_after", defaults.requeue_after)),
        reconcile_timeout=float(section.get("reconcile_timeout", defaults.reconcile_timeout)),
    )


def _parse_store(section: dict) -> StoreConfig:
    store_type = str(section.get("type", "memory"))
    if store_type not in STORE_TYPES:
        raise ValueError(f"Unsupported store type '{store_type}'")
    kubeconfig = section.get("kubeconfig")
    timeout = section.get("request_timeout", 10.0)
    return StoreConfig(
        type=store_type,
        kubeconfig=Path(kubeconfig) if kubeconfig else None,
        request_timeout=float(timeout) if timeout is not None else None,
    )


def _parse_watchers(entries: Iterable[dict]) -> List[WatcherConfig]:
    watchers: List[WatcherConfig] = []
    for entry in entries:
        options = entry.get("options", {})
        if not isinstance(options, dict):
            raise ValueError("watcher 'options' must be a mapping if provided")
        watchers.append(
            WatcherConfig(
                type=str(entry["type"]),
                path=Path(entry.get("path", ".")),
                interval=float(entry.get("interval", 5.0)),
                options=options,
            )
        )
    return watchers


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a mapping")
    return section


def load_config(path: Path) -> AgentConfig:
    data = yaml.safe_load(Path(path).read_text())
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Agent configuration must be a mapping")

    controller = _parse_controller(_section(data, "controller"))
    store = _parse_store(_section(data, "store"))

    watchers_section = data.get("watchers", [])
    if not isinstance(watchers_section, list):
        raise ValueError("'watchers' section must be a list")
    watchers = _parse_watchers(watchers_section)

    for watcher in watchers:
        if watcher.type == "file" and store.type != "memory":
            raise ValueError("file watchers require the in-memory store")

    return AgentConfig(controller=controller, store=store, watchers=watchers)
