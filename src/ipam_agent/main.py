"""Entry point for the standalone IPAM agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event

from kubernetes import client

from cluster_dispatch import HandlerRegistry
from cluster_dispatch.config_extensions import GROUP, controller_config_from_conf, load_conf
from cluster_dispatch.handlers import build_ipam_handler
from proxmox_ipam.controller import ReconcileController
from proxmox_ipam.kube import KubernetesStore, load_api_client
from proxmox_ipam.store import InMemoryStore, RecordStore

from .config import AgentConfig, StoreConfig, load_config
from .watchers import FileClusterWatcher, RequeueScheduler, create_kubernetes_watcher

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def _build_store(store_cfg: StoreConfig) -> RecordStore:
    if store_cfg.type == "memory":
        return InMemoryStore()

    kubeconfig = str(store_cfg.kubeconfig) if store_cfg.kubeconfig else None
    api = client.CustomObjectsApi(load_api_client(kubeconfig))
    return KubernetesStore(api, request_timeout=store_cfg.request_timeout)


def _apply_oslo_overrides(config: AgentConfig, path: Path) -> AgentConfig:
    conf = load_conf([str(path)], defaults=config.controller)
    config.controller = controller_config_from_conf(conf)
    kubeconfig = conf[GROUP].kubeconfig
    if kubeconfig and config.store.kubeconfig is None:
        config.store.kubeconfig = Path(kubeconfig)
    return config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the Proxmox cluster IPAM agent")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("/etc/proxmox-ipam/agent.yaml"),
        help="Path to the agent configuration file",
    )
    parser.add_argument(
        "--oslo-config-file",
        type=Path,
        default=None,
        help="Optional oslo.config file overriding the [proxmox_ipam] options",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(args.config)
    if args.oslo_config_file is not None:
        config = _apply_oslo_overrides(config, args.oslo_config_file)

    store = _build_store(config.store)
    stop_event = Event()

    controller = ReconcileController(store, config.controller)
    registry = HandlerRegistry()
    handler = build_ipam_handler(controller, cancel=stop_event)
    registry.register("ipam", handler)

    watchers = []
    for watcher_cfg in config.watchers:
        if watcher_cfg.type == "file":
            if not isinstance(store, InMemoryStore):
                raise ValueError("file watchers require the in-memory store")
            watcher = FileClusterWatcher(
                registry=registry,
                store=store,
                path=watcher_cfg.path,
                interval=watcher_cfg.interval,
                stop_event=stop_event,
            )
        elif watcher_cfg.type == "kubernetes":
            watcher = create_kubernetes_watcher(
                registry,
                store,
                watcher_cfg.options,
                stop_event,
                default_interval=watcher_cfg.interval,
            )
        else:
            raise ValueError(f"unsupported watcher type '{watcher_cfg.type}'")
        watcher.start()
        watchers.append(watcher)

    if not watchers:
        LOG.warning("no watchers configured; agent will idle")

    scheduler = RequeueScheduler(registry, handler, stop_event=stop_event)
    scheduler.start()

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    for watcher in watchers:
        watcher.join()
    scheduler.join()

    LOG.info("IPAM agent stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
