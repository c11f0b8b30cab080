"""Idempotent get-or-create-or-update of managed objects.

Every ensure operation follows the same pattern: read the live object; create
it from the descriptor when it is missing; otherwise copy only the fields the
operator owns for that kind onto a copy of the live object and write it back
when, and only when, the copy differs. Fields written by other actors (the
API server, the platform, users editing a Route's TLS block) survive every
pass.

The per-kind ownership rules live in :data:`ConvergenceEngine._merges`, a
static mapping from :class:`~updateservice.config.MergePolicy` to merge
function.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .builder import graph_data_digest_pod
from .config import (
    KIND_POD,
    ContainerRole,
    ManagedResource,
    MergePolicy,
    Object,
    UpdateService,
    set_owner_reference,
)
from .errors import (
    AlreadyExistsError,
    InvariantViolation,
    NotFoundError,
    ReconcileStepError,
    StoreError,
)
from .names import GRAPH_DATA_IMAGE_ANNOTATION, NAME_GRAPH_DATA_DIGEST_POD
from .store import NO_DEADLINE, Deadline, ObjectStore

LOG = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 1.0

# Container fields copied verbatim from the desired container.
_CONTAINER_FIELDS = (
    "image",
    "imagePullPolicy",
    "command",
    "args",
    "ports",
    "env",
    "volumeMounts",
    "livenessProbe",
    "readinessProbe",
)
_INIT_CONTAINER_FIELDS = ("image", "imagePullPolicy", "volumeMounts")
_SERVICE_FIELDS = ("ports", "selector", "type")


class EnsureResult(Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


def _copy_fields(target: Object, source: Mapping, fields) -> None:
    for name in fields:
        if name in source:
            target[name] = copy.deepcopy(source[name])
        else:
            target.pop(name, None)


def _merge_resources(target: Object, source: Mapping) -> None:
    """Merge limits/requests key by key so keys added by the cluster survive."""

    desired = source.get("resources") or {}
    resources = target.setdefault("resources", {})
    for section in ("limits", "requests"):
        wanted = desired.get(section) or {}
        if not wanted:
            continue
        current = resources.get(section) or {}
        resources[section] = current
        for key, value in wanted.items():
            if current.get(key) != value:
                current[key] = value


def ingress_uri(route: Mapping) -> str:
    """Return the URI of the first admitted ingress of ``route``.

    Raises :class:`ValueError` when the route has not been admitted yet.
    """

    spec = route.get("spec") or {}
    scheme = "https" if spec.get("tls") else "http"
    path = spec.get("path", "")
    for ingress in (route.get("status") or {}).get("ingress") or []:
        host = ingress.get("host")
        if not host:
            continue
        admitted = any(
            c.get("type") == "Admitted" and c.get("status") == "True"
            for c in ingress.get("conditions") or []
        )
        if admitted:
            return f"{scheme}://{host}{path}"
    name = (route.get("metadata") or {}).get("name", "")
    raise ValueError(f"route {name!r} has no admitted ingress")


class ConvergenceEngine:
    """Reconcile managed resource descriptors against an :class:`ObjectStore`.

    Args:
        store: The object store to read from and write to.
        retry_delay: Seconds to wait before the single retry that follows a create race.
        prune_unknown_containers: Drop Deployment containers whose name is not a known
            :class:`ContainerRole` instead of leaving them in place with a warning.
            Unknown init containers are always dropped.
    """

    def __init__(
        self,
        store: ObjectStore,
        *,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        prune_unknown_containers: bool = False,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._retry_delay = retry_delay
        self._prune_unknown_containers = prune_unknown_containers
        self._log = logger or LOG
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._merges: Dict[MergePolicy, Callable[[Object, Object], Object]] = {
            MergePolicy.DATA: self._merge_data,
            MergePolicy.SERVICE: self._merge_service,
            MergePolicy.DEPLOYMENT: self._merge_deployment,
            MergePolicy.ROUTE: self._merge_route,
            MergePolicy.SPEC: self._merge_spec,
            MergePolicy.CREATE_ONLY: self._merge_create_only,
        }

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def ensure(self, resource: ManagedResource, deadline: Deadline = NO_DEADLINE) -> EnsureResult:
        result, _ = self.converge(resource, deadline)
        return result

    def converge(
        self, resource: ManagedResource, deadline: Deadline = NO_DEADLINE
    ) -> Tuple[EnsureResult, Object]:
        """Ensure ``resource`` and return the result with the live object."""

        return self._converge(resource, deadline, retry=True)

    def ensure_route(
        self,
        route: ManagedResource,
        legacy_route: ManagedResource,
        deadline: Deadline = NO_DEADLINE,
    ) -> Tuple[EnsureResult, Object]:
        """Converge the policy-engine route, honouring its pre-rename name.

        While a route with the legacy name exists it is the one kept in sync,
        so clients using its host keep working. Otherwise the current name is
        ensured.
        """

        try:
            found = self._store.get(*legacy_route.key, deadline=deadline)
        except NotFoundError:
            return self._converge(route, deadline, retry=True)
        self._log.debug(
            "Using legacy route %s/%s for %s", legacy_route.namespace, legacy_route.name, route.name
        )
        return self._update_found(route, found, deadline)

    def ensure_deployment(
        self,
        deployment: ManagedResource,
        graph_data_digest: str = "",
        deadline: Deadline = NO_DEADLINE,
    ) -> EnsureResult:
        """Ensure the Deployment, pinning the resolved graph-data digest if known."""

        if graph_data_digest:
            body = copy.deepcopy(deployment.body)
            annotations = body["spec"]["template"]["metadata"].setdefault("annotations", {})
            annotations[GRAPH_DATA_IMAGE_ANNOTATION] = graph_data_digest
            deployment = dataclasses.replace(deployment, body=body)
        return self.ensure(deployment, deadline)

    def ensure_graph_data_digest(self, instance: UpdateService, deadline: Deadline = NO_DEADLINE) -> str:
        """Resolve the digest of a tag-referenced graph-data image.

        A throw-away Pod pulls the image; its first container status reports
        the resolved ``imageID``. Once the Pod has run to completion it is
        deleted so the next pass pulls the tag again. Images already pinned
        by digest need no lookup.
        """

        image = instance.spec.graph_data_image
        if not image or "@sha256" in image:
            return ""

        pod = graph_data_digest_pod(instance, self._clock())
        try:
            found = self._store.get(KIND_POD, instance.namespace, NAME_GRAPH_DATA_DIGEST_POD, deadline=deadline)
        except NotFoundError:
            self._log.info("Creating Pod %s/%s", pod.namespace, pod.name)
            try:
                self._store.create(pod.render(), deadline=deadline)
            except StoreError as exc:
                raise ReconcileStepError("graph data digest", "CreateGraphDataPodFailed", exc) from exc
            return ""
        except StoreError as exc:
            raise ReconcileStepError("graph data digest", "GetGraphDataPodFailed", exc) from exc

        status = found.get("status") or {}
        if status.get("phase") == "Succeeded":
            try:
                self._store.delete(KIND_POD, instance.namespace, NAME_GRAPH_DATA_DIGEST_POD, deadline=deadline)
            except StoreError as exc:
                raise ReconcileStepError("graph data digest", "DeleteGraphDataPodFailed", exc) from exc
            return ""

        statuses = status.get("containerStatuses") or []
        if statuses:
            return str(statuses[0].get("imageID", ""))
        raise ReconcileStepError(
            "graph data digest",
            "GraphDataPodStatusEmpty",
            InvariantViolation("graph-data pod returned empty container status"),
        )

    # ------------------------------------------------------------------
    # Get / create / update
    # ------------------------------------------------------------------
    def _converge(
        self, resource: ManagedResource, deadline: Deadline, retry: bool
    ) -> Tuple[EnsureResult, Object]:
        try:
            found = self._store.get(*resource.key, deadline=deadline)
        except NotFoundError:
            return self._create(resource, deadline, retry)
        return self._update_found(resource, found, deadline)

    def _create(
        self, resource: ManagedResource, deadline: Deadline, retry: bool
    ) -> Tuple[EnsureResult, Object]:
        self._log.info("Creating %s %s/%s", resource.kind, resource.namespace, resource.name)
        try:
            created = self._store.create(resource.render(), deadline=deadline)
        except AlreadyExistsError:
            if not retry:
                raise
            # Somebody created it between our get and create; look again once.
            self._log.info(
                "%s %s/%s appeared concurrently; retrying in %.1fs",
                resource.kind,
                resource.namespace,
                resource.name,
                self._retry_delay,
            )
            self._sleep(self._retry_delay)
            return self._converge(resource, deadline, retry=False)
        return EnsureResult.CREATED, created

    def _update_found(
        self, resource: ManagedResource, found: Object, deadline: Deadline
    ) -> Tuple[EnsureResult, Object]:
        merged = self._merges[resource.policy](copy.deepcopy(found), resource.body)
        if resource.owner is not None and resource.policy is not MergePolicy.CREATE_ONLY:
            set_owner_reference(merged, resource.owner)
        if merged == found:
            return EnsureResult.UNCHANGED, found

        metadata = found.get("metadata") or {}
        self._log.info(
            "Updating %s %s/%s", resource.kind, metadata.get("namespace", ""), metadata.get("name", "")
        )
        return EnsureResult.UPDATED, self._store.update(merged, deadline=deadline)

    # ------------------------------------------------------------------
    # Merge rules
    # ------------------------------------------------------------------
    @staticmethod
    def _merge_data(found: Object, desired: Object) -> Object:
        data = desired.get("data") or {}
        if (found.get("data") or {}) != data:
            found["data"] = copy.deepcopy(data)
        return found

    @staticmethod
    def _merge_service(found: Object, desired: Object) -> Object:
        # clusterIP is assigned by the API server and is never ours to set.
        _copy_fields(found.setdefault("spec", {}), desired.get("spec") or {}, _SERVICE_FIELDS)
        return found

    @staticmethod
    def _merge_route(found: Object, desired: Object) -> Object:
        spec = found.get("spec") or {}
        merged = copy.deepcopy(desired.get("spec") or {})
        # TLS may be edited by users after creation; keep whatever is there.
        if "tls" in spec:
            merged["tls"] = spec["tls"]
        else:
            merged.pop("tls", None)
        found["spec"] = merged
        return found

    @staticmethod
    def _merge_spec(found: Object, desired: Object) -> Object:
        found["spec"] = copy.deepcopy(desired.get("spec") or {})
        return found

    @staticmethod
    def _merge_create_only(found: Object, desired: Object) -> Object:
        return found

    def _merge_deployment(self, found: Object, desired: Object) -> Object:
        spec = found.setdefault("spec", {})
        desired_spec = desired["spec"]
        for name in ("replicas", "selector", "strategy"):
            spec[name] = copy.deepcopy(desired_spec[name])

        template = spec.setdefault("template", {})
        desired_template = desired_spec["template"]
        metadata = template.setdefault("metadata", {})
        for name in ("labels", "annotations"):
            additions = desired_template.get("metadata", {}).get(name) or {}
            if additions:
                merged = metadata.get(name) or {}
                merged.update(additions)
                metadata[name] = merged

        pod = template.setdefault("spec", {})
        desired_pod = desired_template["spec"]
        pod["volumes"] = copy.deepcopy(desired_pod.get("volumes") or [])
        pod["containers"] = self._merge_containers(
            pod.get("containers") or [], desired_pod.get("containers") or []
        )
        self._merge_init_containers(pod, desired_pod.get("initContainers") or [])
        return found

    def _merge_containers(self, found: List[Object], desired: List[Object]) -> List[Object]:
        wanted = {c["name"]: c for c in desired}
        merged: List[Object] = []
        for container in found:
            name = container.get("name", "")
            role = ContainerRole.for_container(name)
            original = wanted.get(name)
            if role is None or role.is_init or original is None:
                if self._prune_unknown_containers:
                    self._log.info("Unexpected container %s in pod will be removed", name)
                    continue
                self._log.warning("encountered unexpected container %s in pod", name)
                merged.append(container)
                continue
            _copy_fields(container, original, _CONTAINER_FIELDS)
            _merge_resources(container, original)
            merged.append(container)
        return merged

    def _merge_init_containers(self, pod: Object, desired: List[Object]) -> None:
        wanted = {c["name"]: c for c in desired}
        kept: List[Object] = []
        for container in pod.get("initContainers") or []:
            name = container.get("name", "")
            role = ContainerRole.for_container(name)
            original = wanted.get(name)
            if role is None or not role.is_init or original is None:
                self._log.info("Unexpected init container %s in pod will be removed", name)
                continue
            _copy_fields(container, original, _INIT_CONTAINER_FIELDS)
            kept.append(container)

        present = {c["name"] for c in kept}
        for name, original in wanted.items():
            role = ContainerRole.for_container(name)
            if name in present or role is None or not role.is_init:
                continue
            self._log.info("Adding missing init container %s to pod", name)
            kept.append(copy.deepcopy(original))
            present.add(name)

        missing = sorted(set(wanted) - present)
        if missing:
            raise InvariantViolation(f"init container(s) {', '.join(missing)} not found in deployment")

        if kept:
            pod["initContainers"] = kept
        else:
            pod.pop("initContainers", None)
