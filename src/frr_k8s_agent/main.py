"""Entry point for the BGP session state exporter."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event

from oslo_config import cfg

from frr_k8s.reconciler import SessionStateReconciler
from frr_k8s.resources import OwnerReference

from . import opts
from .config import AgentConfig, StatusConfig, load_config, parse_duration
from .controller import StatusController
from .kube import KubeClient, KubeStatusStore, get_pod
from .vtysh import VtyshPeerFetcher
from .watchers import node_state_watcher, session_state_watcher

LOG = logging.getLogger(__name__)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def add_config_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the agent configuration file (YAML)",
    )
    group.add_argument(
        "--config-file",
        type=Path,
        action="append",
        default=None,
        help="oslo.config INI file with a [frr_k8s] section; may be repeated",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )


def load_base_config(args: argparse.Namespace) -> AgentConfig:
    if args.config is not None:
        return load_config(args.config)
    if args.config_file:
        try:
            return opts.load_config_files(args.config_file)
        except cfg.Error as exc:
            raise ValueError(str(exc)) from exc
    return AgentConfig(status=StatusConfig(node_name="", namespace=""))


def build_config(args: argparse.Namespace) -> AgentConfig:
    config = load_base_config(args)

    if args.node_name:
        config.status.node_name = args.node_name
    if args.namespace:
        config.status.namespace = args.namespace
    if args.pod_name:
        config.status.pod_name = args.pod_name
    if args.poll_interval:
        config.status.poll_interval = parse_duration(args.poll_interval)

    if not config.status.node_name:
        raise ValueError("node name is required")
    if not config.status.namespace:
        raise ValueError("namespace is required")
    if not config.status.pod_name:
        raise ValueError("pod name is required")
    return config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Publish the FRR BGP session state of this node"
    )
    add_config_arguments(parser)
    parser.add_argument("--node-name", help="The node this daemon is running on")
    parser.add_argument("--namespace", help="The namespace this daemon is deployed in")
    parser.add_argument("--pod-name", help="The pod name of this daemon")
    parser.add_argument(
        "--poll-interval",
        help="The maximum duration between FRR polls (e.g. 2m)",
    )
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = build_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    status = config.status
    client = KubeClient.from_config(config.kube)
    pod = get_pod(client, status.namespace, status.pod_name)

    reconciler = SessionStateReconciler(
        store=KubeStatusStore(client, status.namespace),
        fetcher=VtyshPeerFetcher(),
        node_name=status.node_name,
        namespace=status.namespace,
        owner=OwnerReference.for_pod(pod),
        resync_period=status.poll_interval,
    )

    stop_event = Event()
    controller = StatusController(reconciler, stop_event, workers=status.workers)
    watchers = [
        session_state_watcher(
            client, status.namespace, status.node_name, controller.handle, stop_event
        ),
        node_state_watcher(client, status.node_name, controller.handle, stop_event),
    ]

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    LOG.info(
        "starting status exporter for node %s (resync every %ss)",
        status.node_name,
        status.poll_interval,
    )
    controller.start()
    for watcher in watchers:
        watcher.start()

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    controller.stop()
    client.close()

    LOG.info("status exporter stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
