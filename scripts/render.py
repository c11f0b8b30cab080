#!/usr/bin/env python3
"""Render the objects an UpdateService manifest would produce, as YAML."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from updateservice import (  # noqa: E402
    DesiredStateBuilder,
    ExternalDependencies,
    InMemoryObjectStore,
    ProxySettings,
    ReconcileRequest,
    UpdateService,
    UpdateServiceReconciler,
)
from updateservice.config import KIND_UPDATE_SERVICE  # noqa: E402

LOG = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("manifest", type=Path, help="UpdateService manifest (YAML)")
    parser.add_argument(
        "--operand-image",
        required=True,
        help="Image providing graph-builder and policy-engine",
    )
    parser.add_argument(
        "--dependency",
        type=Path,
        action="append",
        default=[],
        help="Extra cluster object (YAML) such as the pull secret, the Image config "
        "or a trusted-CA ConfigMap; may be repeated",
    )
    parser.add_argument("--http-proxy", default="")
    parser.add_argument("--https-proxy", default="")
    parser.add_argument("--no-proxy", default="")
    parser.add_argument(
        "--converge",
        action="store_true",
        help="Run a full reconcile pass against an in-memory cluster and dump it",
    )
    parser.add_argument("--output", type=Path, help="Write YAML here instead of stdout")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args()


def load_documents(path: Path) -> List[Dict[str, Any]]:
    with path.open() as fh:
        return [doc for doc in yaml.safe_load_all(fh) if doc]


def find_dependency(objects: List[Dict[str, Any]], kind: str, name: str) -> Optional[Dict[str, Any]]:
    for obj in objects:
        if obj.get("kind") == kind and obj.get("metadata", {}).get("name") == name:
            return obj
    return None


def render(instance: UpdateService, operand_image: str, objects, proxy: ProxySettings):
    image = find_dependency(objects, "Image", "cluster") or {}
    ca_name = (image.get("spec") or {}).get("additionalTrustedCA", {}).get("name", "")
    dependencies = ExternalDependencies(
        pull_secret=find_dependency(objects, "Secret", "pull-secret"),
        trusted_ca=find_dependency(objects, "ConfigMap", ca_name) if ca_name else None,
        proxy=proxy,
    )
    bundle = DesiredStateBuilder(operand_image).build(instance, dependencies)
    return [descriptor.render() for descriptor in bundle.descriptors()]


def converge(manifest: Dict[str, Any], operand_image: str, objects, proxy: ProxySettings):
    manifest.setdefault("metadata", {}).setdefault("namespace", "default")
    store = InMemoryObjectStore([manifest, *objects])
    reconciler = UpdateServiceReconciler(store, operand_image, proxy=proxy, resync_period=0)
    metadata = manifest["metadata"]
    try:
        reconciler.reconcile(ReconcileRequest(metadata["namespace"], metadata["name"]))
    except Exception as exc:
        LOG.error("reconcile pass failed: %s", exc)
    return [obj for kind in sorted({kind for _, kind, _, _ in store.writes()}) for obj in store.list(kind)] + [
        store.get(KIND_UPDATE_SERVICE, metadata["namespace"], metadata["name"])
    ]


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    manifests = load_documents(args.manifest)
    if len(manifests) != 1 or manifests[0].get("kind") != KIND_UPDATE_SERVICE:
        raise SystemExit(f"{args.manifest} must contain exactly one UpdateService")
    manifest = manifests[0]

    objects: List[Dict[str, Any]] = []
    for path in args.dependency:
        objects.extend(load_documents(path))

    proxy = ProxySettings(args.http_proxy, args.https_proxy, args.no_proxy)
    if args.converge:
        rendered = converge(manifest, args.operand_image, objects, proxy)
    else:
        manifest.setdefault("metadata", {}).setdefault("namespace", "default")
        rendered = render(UpdateService.from_object(manifest), args.operand_image, objects, proxy)

    text = yaml.safe_dump_all(rendered, sort_keys=False)
    if args.output:
        args.output.write_text(text)
        LOG.info("Rendered %d objects to %s", len(rendered), args.output)
    else:
        sys.stdout.write(text)


if __name__ == "__main__":
    main()
