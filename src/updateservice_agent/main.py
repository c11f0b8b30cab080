"""Entry point for the update service operator agent."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event
from typing import List

from updateservice import ConvergenceEngine, DependencyMapper, UpdateServiceReconciler
from updateservice.config import KIND_UPDATE_SERVICE
from updateservice.events import ReconcileRequest
from updateservice.store import ObjectStore

from .config import OperatorConfig, load_config
from .kube import KubernetesObjectStore
from .queue import ReconcileWorker, RequestQueue
from .registry import build_registry
from .watchers import PollingWatcher

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def build_reconciler(config: OperatorConfig, store: ObjectStore) -> UpdateServiceReconciler:
    options = config.reconcile
    engine = ConvergenceEngine(
        store,
        retry_delay=options.retry_delay,
        prune_unknown_containers=options.prune_unknown_containers,
    )
    return UpdateServiceReconciler(
        store,
        config.operand_image,
        operator_namespace=config.operator_namespace,
        proxy=config.proxy,
        engine=engine,
        request_timeout=options.request_timeout,
        resync_period=options.resync_period,
    )


def initial_requests(config: OperatorConfig, store: ObjectStore) -> List[ReconcileRequest]:
    """List the instances in scope so the first pass does not wait on a poll."""

    namespaces = list(config.watch_namespaces) or [None]
    requests: List[ReconcileRequest] = []
    for namespace in namespaces:
        for obj in store.list(KIND_UPDATE_SERVICE, namespace):
            metadata = obj.get("metadata") or {}
            requests.append(ReconcileRequest(metadata.get("namespace", ""), metadata["name"]))
    return requests


def run_once(config: OperatorConfig, store: ObjectStore) -> int:
    """Reconcile every instance a single time; return the number of failures."""

    reconciler = build_reconciler(config, store)
    failures = 0
    for request in initial_requests(config, store):
        try:
            reconciler.reconcile(request)
        except Exception:
            LOG.exception("reconcile of %s failed", request)
            failures += 1
    return failures


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the update service operator")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("/etc/updateservice-operator/config.yaml"),
        help="Path to the operator configuration file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Reconcile every instance once and exit",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(args.config)
    store = KubernetesObjectStore.from_settings(config.kube)

    if args.once:
        return 1 if run_once(config, store) else 0

    stop_event = Event()
    queue = RequestQueue()
    watch_namespace = config.watch_namespaces[0] if len(config.watch_namespaces) == 1 else None
    registry = build_registry(
        queue, DependencyMapper(store, watch_namespace), config.watch_namespaces
    )
    reconciler = build_reconciler(config, store)

    workers = []
    for index in range(config.reconcile.workers):
        worker = ReconcileWorker(
            queue,
            reconciler.reconcile,
            stop_event,
            error_requeue_delay=config.reconcile.error_requeue_delay,
            name=f"reconcile-{index}",
        )
        worker.start()
        workers.append(worker)

    watchers = []
    for watcher_cfg in config.watchers:
        watcher = PollingWatcher(
            registry=registry,
            store=store,
            kind=watcher_cfg.kind,
            namespace=watcher_cfg.namespace,
            interval=watcher_cfg.interval,
            stop_event=stop_event,
        )
        # Perform an initial poll so we react immediately
        try:
            watcher.poll()
        except Exception:  # pragma: no cover - logged inside watcher
            LOG.exception("initial poll failed for %s watcher", watcher_cfg.kind)
        watcher.start()
        watchers.append(watcher)

    if not watchers:
        LOG.warning("no watchers configured; only periodic resyncs will run")
        for request in initial_requests(config, store):
            queue.add(request)

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

    queue.shutdown()
    for thread in watchers + workers:
        thread.join()

    LOG.info("update service operator stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
