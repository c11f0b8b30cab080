"""YAML configuration loader for the update service operator agent."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

import yaml

from updateservice.config import (
    KIND_CONFIG_MAP,
    KIND_DEPLOYMENT,
    KIND_IMAGE_CONFIG,
    KIND_NETWORK_POLICY,
    KIND_POD_DISRUPTION_BUDGET,
    KIND_ROUTE,
    KIND_SECRET,
    KIND_SERVICE,
    KIND_UPDATE_SERVICE,
    ProxySettings,
)
from updateservice.names import OPENSHIFT_CONFIG_NAMESPACE

# Kinds polled when the configuration does not list watchers explicitly.
DEFAULT_WATCHED_KINDS = (
    KIND_UPDATE_SERVICE,
    KIND_IMAGE_CONFIG,
    KIND_CONFIG_MAP,
    KIND_SECRET,
    KIND_SERVICE,
    KIND_DEPLOYMENT,
    KIND_ROUTE,
    KIND_POD_DISRUPTION_BUDGET,
    KIND_NETWORK_POLICY,
)


@dataclass
class ReconcileOptions:
    workers: int = 2
    resync_period: float = 300.0
    error_requeue_delay: float = 10.0
    request_timeout: Optional[float] = 60.0
    retry_delay: float = 1.0
    prune_unknown_containers: bool = False


@dataclass
class WatcherConfig:
    kind: str
    namespace: Optional[str] = None
    interval: float = 5.0


@dataclass
class KubeConfig:
    kubeconfig: Optional[Path] = None
    context: Optional[str] = None
    in_cluster: Optional[bool] = None


@dataclass
class OperatorConfig:
    operand_image: str
    operator_namespace: Optional[str] = None
    watch_namespaces: Sequence[str] = field(default_factory=list)
    proxy: ProxySettings = ProxySettings()
    reconcile: ReconcileOptions = field(default_factory=ReconcileOptions)
    watchers: Sequence[WatcherConfig] = field(default_factory=list)
    kube: KubeConfig = field(default_factory=KubeConfig)


def _split_namespaces(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items: Iterable = value.split(",")
    elif isinstance(value, list):
        items = value
    else:
        raise ValueError("'watch_namespaces' must be a list or a comma separated string")
    return [str(item).strip() for item in items if str(item).strip()]


def _parse_reconcile(section: dict) -> ReconcileOptions:
    if not isinstance(section, dict):
        raise ValueError("'reconcile' section must be a mapping")
    timeout = section.get("request_timeout", 60.0)
    options = ReconcileOptions(
        workers=int(section.get("workers", 2)),
        resync_period=float(section.get("resync_period", 300.0)),
        error_requeue_delay=float(section.get("error_requeue_delay", 10.0)),
        request_timeout=float(timeout) if timeout is not None else None,
        retry_delay=float(section.get("retry_delay", 1.0)),
        prune_unknown_containers=bool(section.get("prune_unknown_containers", False)),
    )
    if options.workers < 1:
        raise ValueError("'reconcile.workers' must be at least 1")
    return options


def _parse_watchers(entries: Iterable[dict]) -> List[WatcherConfig]:
    watchers: List[WatcherConfig] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError("watcher entries must be mappings")
        if "kind" not in entry:
            raise ValueError("watcher entry missing 'kind'")
        watchers.append(
            WatcherConfig(
                kind=str(entry["kind"]),
                namespace=entry.get("namespace"),
                interval=float(entry.get("interval", entry.get("poll_interval", 5.0))),
            )
        )
    return watchers


def default_watchers(namespaces: Sequence[str], interval: float = 5.0) -> List[WatcherConfig]:
    """One watcher per kind and watched namespace.

    The Image singleton is cluster scoped, and trusted-CA sources live in
    ``openshift-config``, so ConfigMaps there are always polled too.
    """

    scopes: Sequence[Optional[str]] = list(namespaces) or [None]
    watchers: List[WatcherConfig] = []
    for kind in DEFAULT_WATCHED_KINDS:
        if kind == KIND_IMAGE_CONFIG:
            watchers.append(WatcherConfig(kind=kind, namespace="", interval=interval))
            continue
        for namespace in scopes:
            watchers.append(WatcherConfig(kind=kind, namespace=namespace, interval=interval))
    if namespaces and OPENSHIFT_CONFIG_NAMESPACE not in namespaces:
        watchers.append(WatcherConfig(kind=KIND_CONFIG_MAP, namespace=OPENSHIFT_CONFIG_NAMESPACE, interval=interval))
    return watchers


def _parse_kube(section: dict) -> KubeConfig:
    if not isinstance(section, dict):
        raise ValueError("'kube' section must be a mapping")
    kubeconfig = section.get("kubeconfig")
    in_cluster = section.get("in_cluster")
    return KubeConfig(
        kubeconfig=Path(kubeconfig) if kubeconfig else None,
        context=section.get("context"),
        in_cluster=bool(in_cluster) if in_cluster is not None else None,
    )


def apply_environment(config: OperatorConfig, environ: Mapping[str, str]) -> OperatorConfig:
    """Overlay the variables the operator's deployment injects."""

    if environ.get("OPERAND_IMAGE"):
        config.operand_image = environ["OPERAND_IMAGE"]
    if "WATCH_NAMESPACE" in environ:
        config.watch_namespaces = _split_namespaces(environ["WATCH_NAMESPACE"])
    if environ.get("POD_NAMESPACE"):
        config.operator_namespace = environ["POD_NAMESPACE"]
    proxy = ProxySettings.from_environ(environ)
    if proxy.configured:
        config.proxy = proxy
    return config


def parse_config(data: Mapping, environ: Optional[Mapping[str, str]] = None) -> OperatorConfig:
    if not isinstance(data, dict):
        raise ValueError("Operator configuration must be a mapping")

    proxy_section = data.get("proxy") or {}
    if not isinstance(proxy_section, dict):
        raise ValueError("'proxy' section must be a mapping")

    config = OperatorConfig(
        operand_image=str(data.get("operand_image") or ""),
        operator_namespace=data.get("operator_namespace"),
        watch_namespaces=_split_namespaces(data.get("watch_namespaces")),
        proxy=ProxySettings(
            http_proxy=str(proxy_section.get("http_proxy", "")),
            https_proxy=str(proxy_section.get("https_proxy", "")),
            no_proxy=str(proxy_section.get("no_proxy", "")),
        ),
        reconcile=_parse_reconcile(data.get("reconcile") or {}),
        kube=_parse_kube(data.get("kube") or {}),
    )
    apply_environment(config, os.environ if environ is None else environ)

    if not config.operand_image:
        raise ValueError("Configuration missing 'operand_image' (or OPERAND_IMAGE)")

    watchers_section = data.get("watchers")
    if watchers_section is None:
        config.watchers = default_watchers(config.watch_namespaces)
    elif not isinstance(watchers_section, list):
        raise ValueError("'watchers' section must be a list")
    else:
        config.watchers = _parse_watchers(watchers_section)
    return config


def load_config(path: Optional[Path], environ: Optional[Mapping[str, str]] = None) -> OperatorConfig:
    """Load ``path`` (if it exists) and apply environment overrides."""

    data: dict = {}
    if path is not None and path.exists():
        data = yaml.safe_load(path.read_text()) or {}
    return parse_config(data, environ)
