#!/usr/bin/env python3
"""Run a few reconcile passes over a manifest file and print cluster status.

Example::

    python scripts/lab/reconcile_once.py lab/clusters.yaml --fake-ipam

``--fake-ipam`` stands in for the IPAM provider: pending address claims are
answered with the first address of their pool between passes.
"""

from __future__ import annotations

import argparse
import ipaddress
import json
import logging
import sys
from pathlib import Path
from threading import Event

from cluster_dispatch import HandlerRegistry
from cluster_dispatch.handlers import build_ipam_handler
from ipam_agent.watchers import FileClusterWatcher
from proxmox_ipam.config import (
    IN_CLUSTER_IP_POOL,
    IP_ADDRESS,
    IP_ADDRESS_CLAIM,
    PROXMOX_CLUSTER,
    ControllerConfig,
    ProxmoxCluster,
)
from proxmox_ipam.controller import ReconcileController, phase_of
from proxmox_ipam.store import InMemoryStore, NotFoundError


def first_address(entry: str) -> str:
    if "/" in entry:
        network = ipaddress.ip_network(entry, strict=False)
        return str(next(iter(network.hosts()), network.network_address))
    return entry.split("-", 1)[0].strip()


def answer_claims(store: InMemoryStore) -> int:
    answered = 0
    for claim in store.list(IP_ADDRESS_CLAIM):
        metadata = claim["metadata"]
        try:
            store.get(IP_ADDRESS, metadata["namespace"], metadata["name"])
            continue
        except NotFoundError:
            pass
        pool_name = claim["spec"]["poolRef"]["name"]
        pool = store.get(IN_CLUSTER_IP_POOL, metadata["namespace"], pool_name)
        spec = pool["spec"]
        store.create(
            IP_ADDRESS,
            {
                "metadata": {"name": metadata["name"], "namespace": metadata["namespace"]},
                "spec": {
                    "address": first_address(spec["addresses"][0]),
                    "prefix": spec["prefix"],
                    "gateway": spec["gateway"],
                    "claimRef": {"name": metadata["name"]},
                    "poolRef": claim["spec"]["poolRef"],
                },
            },
        )
        answered += 1
    return answered


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("manifests", type=Path, help="YAML/JSON manifest file")
    parser.add_argument("--passes", type=int, default=3, help="Reconcile passes to run")
    parser.add_argument("--port", type=int, default=6443, help="Control plane port")
    parser.add_argument(
        "--fake-ipam", action="store_true", help="Answer address claims between passes"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    store = InMemoryStore()
    controller = ReconcileController(
        store, ControllerConfig(control_plane_endpoint_port=args.port)
    )
    registry = HandlerRegistry()
    registry.register("ipam", build_ipam_handler(controller))
    watcher = FileClusterWatcher(
        registry=registry, store=store, path=args.manifests, interval=0, stop_event=Event()
    )

    for _ in range(args.passes):
        watcher.poll()
        if args.fake_ipam:
            answer_claims(store)

    report = []
    for manifest in store.list(PROXMOX_CLUSTER):
        cluster = ProxmoxCluster.from_manifest(manifest)
        report.append(
            {
                "cluster": cluster.identity.key,
                "phase": phase_of(cluster).value,
                "status": manifest.get("status", {}),
            }
        )
    json.dump(report, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
