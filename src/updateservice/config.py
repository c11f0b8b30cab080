"""Data structures describing the primary object and the managed resources.

These light-weight dataclasses are shared by the builder, the convergence
engine and the reconciler. Cluster objects themselves are kept as plain
Kubernetes-style dictionaries (``apiVersion``/``kind``/``metadata``/...), so
they can be handed to any store implementation without conversion.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import SpecValidationError
from .names import (
    NAME_CERT_CONFIG_MAP_KEY,
    NAME_CONTAINER_GRAPH_BUILDER,
    NAME_CONTAINER_POLICY_ENGINE,
    NAME_INIT_CONTAINER_GRAPH_DATA,
)

KIND_UPDATE_SERVICE = "UpdateService"
KIND_IMAGE_CONFIG = "Image"
KIND_CONFIG_MAP = "ConfigMap"
KIND_SECRET = "Secret"
KIND_SERVICE = "Service"
KIND_DEPLOYMENT = "Deployment"
KIND_ROUTE = "Route"
KIND_POD_DISRUPTION_BUDGET = "PodDisruptionBudget"
KIND_NETWORK_POLICY = "NetworkPolicy"
KIND_POD = "Pod"

API_VERSIONS: Dict[str, str] = {
    KIND_UPDATE_SERVICE: "updateservice.operator.openshift.io/v1",
    KIND_IMAGE_CONFIG: "config.openshift.io/v1",
    KIND_CONFIG_MAP: "v1",
    KIND_SECRET: "v1",
    KIND_SERVICE: "v1",
    KIND_POD: "v1",
    KIND_DEPLOYMENT: "apps/v1",
    KIND_ROUTE: "route.openshift.io/v1",
    KIND_POD_DISRUPTION_BUDGET: "policy/v1",
    KIND_NETWORK_POLICY: "networking.k8s.io/v1",
}

Object = Dict[str, Any]


class MergePolicy(Enum):
    """Which fields of a live object the engine owns for a given kind."""

    DATA = auto()
    SERVICE = auto()
    DEPLOYMENT = auto()
    ROUTE = auto()
    SPEC = auto()
    CREATE_ONLY = auto()


class ContainerRole(Enum):
    """Closed set of containers the operand Deployment is made of."""

    GRAPH_BUILDER = NAME_CONTAINER_GRAPH_BUILDER
    POLICY_ENGINE = NAME_CONTAINER_POLICY_ENGINE
    GRAPH_DATA = NAME_INIT_CONTAINER_GRAPH_DATA

    @property
    def container_name(self) -> str:
        return self.value

    @property
    def is_init(self) -> bool:
        return self is ContainerRole.GRAPH_DATA

    @classmethod
    def for_container(cls, name: str) -> Optional["ContainerRole"]:
        """Return the role for a container ``name`` or ``None`` if unknown."""

        return _ROLES_BY_NAME.get(name)


_ROLES_BY_NAME: Dict[str, ContainerRole] = {role.value: role for role in ContainerRole}


@dataclass(frozen=True)
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str

    def as_dict(self) -> Object:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }


@dataclass(frozen=True)
class ProxySettings:
    """Cluster-wide proxy variables handed to the operator by its deployer."""

    http_proxy: str = ""
    https_proxy: str = ""
    no_proxy: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.http_proxy or self.https_proxy or self.no_proxy)

    def env(self) -> List[Object]:
        values = (
            ("HTTP_PROXY", self.http_proxy),
            ("HTTPS_PROXY", self.https_proxy),
            ("NO_PROXY", self.no_proxy),
        )
        return [{"name": name, "value": value} for name, value in values if value]

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "ProxySettings":
        return cls(
            http_proxy=environ.get("HTTP_PROXY", ""),
            https_proxy=environ.get("HTTPS_PROXY", ""),
            no_proxy=environ.get("NO_PROXY", ""),
        )


@dataclass(frozen=True)
class UpdateServiceSpec:
    """User-authored desired state of one update service."""

    replicas: int
    releases: str
    graph_data_image: str = ""
    ca_config_map_key: str = NAME_CERT_CONFIG_MAP_KEY

    def split_releases(self) -> Tuple[str, str]:
        """Split ``releases`` into ``(registry, repository)``."""

        segments = self.releases.split("/", 1)
        if len(segments) != 2 or not all(segments):
            raise SpecValidationError(
                f"failed to split {self.releases!r} into registry and repository components"
            )
        return segments[0], segments[1]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UpdateServiceSpec":
        releases = data.get("releases")
        if not releases and (data.get("registry") or data.get("repository")):
            # Older API versions carried the two components separately.
            releases = f"{data.get('registry', '')}/{data.get('repository', '')}"
        return cls(
            replicas=int(data.get("replicas", 1)),
            releases=str(releases or ""),
            graph_data_image=str(data.get("graphDataImage") or ""),
            ca_config_map_key=str(data.get("caConfigMapKey") or NAME_CERT_CONFIG_MAP_KEY),
        )


@dataclass
class UpdateService:
    """The primary instance driving one reconciliation target."""

    name: str
    namespace: str
    spec: UpdateServiceSpec
    uid: str = ""
    api_version: str = API_VERSIONS[KIND_UPDATE_SERVICE]
    status: Object = field(default_factory=dict)
    resource_version: str = ""

    @property
    def policy_engine_uri(self) -> str:
        return str(self.status.get("policyEngineURI", ""))

    def owner_reference(self) -> OwnerReference:
        return OwnerReference(
            api_version=self.api_version,
            kind=KIND_UPDATE_SERVICE,
            name=self.name,
            uid=self.uid,
        )

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> "UpdateService":
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata["name"],
            namespace=metadata.get("namespace", ""),
            uid=metadata.get("uid", ""),
            api_version=obj.get("apiVersion", API_VERSIONS[KIND_UPDATE_SERVICE]),
            spec=UpdateServiceSpec.from_dict(obj.get("spec") or {}),
            status=copy.deepcopy(obj.get("status") or {}),
            resource_version=metadata.get("resourceVersion", ""),
        )


@dataclass(frozen=True)
class ExternalDependencies:
    """Objects discovered elsewhere in the cluster for one pass.

    Every entry is optional; presence is decided by the reconciler's lookups.
    ``proxy`` gates the cluster-proxy CA bundle.
    """

    pull_secret: Optional[Object] = None
    trusted_ca: Optional[Object] = None
    cluster_ca: Optional[Object] = None
    proxy: ProxySettings = ProxySettings()


@dataclass(frozen=True)
class ManagedResource:
    """Descriptor of one object the engine creates and keeps in sync."""

    kind: str
    namespace: str
    name: str
    body: Object
    policy: MergePolicy
    owner: Optional[OwnerReference] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        return self.kind, self.namespace, self.name

    def render(self) -> Object:
        """Return a private copy of the payload with the owner reference set."""

        obj = copy.deepcopy(self.body)
        if self.owner is not None:
            set_owner_reference(obj, self.owner)
        return obj


def set_owner_reference(obj: Object, owner: OwnerReference) -> bool:
    """Add ``owner`` as controller reference; return ``True`` if it changed."""

    refs = obj.setdefault("metadata", {}).setdefault("ownerReferences", [])
    if any(ref.get("uid") == owner.uid and ref.get("kind") == owner.kind for ref in refs):
        return False
    refs.append(owner.as_dict())
    return True


def new_object(
    kind: str,
    name: str,
    namespace: str,
    *,
    labels: Optional[Mapping[str, str]] = None,
    annotations: Optional[Mapping[str, str]] = None,
) -> Object:
    metadata: Object = {"name": name, "namespace": namespace}
    if labels:
        metadata["labels"] = dict(labels)
    if annotations:
        metadata["annotations"] = dict(annotations)
    return {"apiVersion": API_VERSIONS[kind], "kind": kind, "metadata": metadata}
