"""Sequencing of one reconcile pass for an UpdateService instance.

A pass has three phases:

1. gather the external dependencies (global pull secret, additional trusted
   CA, cluster-proxy CA) and record diagnostics about them;
2. render every managed object once through the
   :class:`~updateservice.builder.DesiredStateBuilder`;
3. converge the rendered objects in a fixed order, stopping at the first
   failing step.

Conditions are rebuilt from scratch on every pass and written back through
``update_status`` at the end, whether the pass succeeded or not.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from .builder import DesiredStateBuilder, DesiredStateBundle
from .conditions import (
    CONDITION_RECONCILE_COMPLETED,
    CONDITION_RECONCILE_ERROR,
    CONDITION_REGISTRY_CA_CERT_FOUND,
    STATUS_FALSE,
    STATUS_TRUE,
    ConditionTracker,
)
from .config import (
    KIND_CONFIG_MAP,
    KIND_IMAGE_CONFIG,
    KIND_SECRET,
    KIND_UPDATE_SERVICE,
    ExternalDependencies,
    Object,
    ProxySettings,
    UpdateService,
)
from .ensure import ConvergenceEngine, ingress_uri
from .errors import (
    InvariantViolation,
    NotFoundError,
    PullSecretNotFoundError,
    ReconcileStepError,
    StoreError,
)
from .events import ReconcileRequest, ReconcileResult
from .mapper import additional_trusted_ca_name
from .names import (
    DNS1123_LABEL_FMT,
    DNS1123_LABEL_MAX_LENGTH,
    IMAGE_CONFIG_NAME,
    NAME_CLUSTER_CERT_CONFIG_MAP_KEY,
    NAME_CLUSTER_TRUSTED_CA_VOLUME,
    NAME_PULL_SECRET,
    OPENSHIFT_CONFIG_NAMESPACE,
    name_policy_engine_route,
)
from .store import Deadline, ObjectStore

LOG = logging.getLogger(__name__)

DEFAULT_RESYNC_PERIOD = 300.0

Step = Tuple[str, str, Callable[[], None]]


def validate_route_name(name: str, namespace: str, pattern: "re.Pattern[str]") -> Optional[str]:
    """Return why the generated route host prefix is unusable, or ``None``.

    The router builds hosts from ``<route>-<namespace>``, which must be a
    valid RFC 1123 label.
    """

    route_name = f"{name_policy_engine_route(name)}-{namespace}"
    reasons = []
    if len(route_name) > DNS1123_LABEL_MAX_LENGTH:
        reasons.append(
            f"cannot exceed RFC 1123 maximum length of {DNS1123_LABEL_MAX_LENGTH}. "
            "Shorten the application name and/or namespace."
        )
    if not pattern.match(route_name):
        reasons.append(f"has invalid format; must comply with {DNS1123_LABEL_FMT!r}.")
    if not reasons:
        return None
    return f"UpdateService route name {route_name!r} " + " Route name ".join(reasons)


class UpdateServiceReconciler:
    """Drive one UpdateService instance toward its declared state.

    Args:
        store: Object store used for every read and write of the pass.
        operand_image: Image providing the graph-builder and policy-engine binaries.
        operator_namespace: Requests for instances outside this namespace are ignored. ``None``
            accepts every namespace.
        proxy: Cluster-wide proxy settings handed to the graph-builder.
        request_timeout: Wall-clock budget of one pass in seconds; ``None`` for no limit.
        resync_period: Delay before a successful pass is repeated.
    """

    def __init__(
        self,
        store: ObjectStore,
        operand_image: str,
        *,
        operator_namespace: Optional[str] = None,
        proxy: ProxySettings = ProxySettings(),
        engine: Optional[ConvergenceEngine] = None,
        builder: Optional[DesiredStateBuilder] = None,
        request_timeout: Optional[float] = None,
        resync_period: float = DEFAULT_RESYNC_PERIOD,
        route_name_pattern: str = DNS1123_LABEL_FMT,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._operator_namespace = operator_namespace
        self._proxy = proxy
        self._engine = engine or ConvergenceEngine(store, logger=logger)
        self._builder = builder or DesiredStateBuilder(operand_image)
        self._request_timeout = request_timeout
        self._resync_period = resync_period
        self._route_name_pattern = re.compile(route_name_pattern)
        self._log = logger or LOG
        self._clock = clock

    def reconcile(
        self, request: ReconcileRequest, cancel_event: Optional[threading.Event] = None
    ) -> ReconcileResult:
        self._log.info("Reconciling UpdateService %s", request)

        if self._operator_namespace and request.namespace != self._operator_namespace:
            self._log.info(
                "Ignoring reconcile request for resource outside of operator's namespace %s",
                self._operator_namespace,
            )
            return ReconcileResult()

        deadline = Deadline.after(self._request_timeout, cancel_event)
        try:
            obj = self._store.get(KIND_UPDATE_SERVICE, request.namespace, request.name, deadline=deadline)
        except NotFoundError:
            # Deleted after the request was queued; owned objects are
            # garbage-collected through their owner references.
            return ReconcileResult()

        instance = UpdateService.from_object(obj)
        conditions = ConditionTracker(self._clock)
        status: Object = {}
        if instance.policy_engine_uri:
            status["policyEngineURI"] = instance.policy_engine_uri

        problem = validate_route_name(instance.name, instance.namespace, self._route_name_pattern)
        if problem is not None:
            conditions.set_condition(
                CONDITION_RECONCILE_ERROR, STATUS_TRUE, "Unable to create UpdateService route", problem
            )
            self._write_status(obj, status, conditions, deadline)
            self._log.error("Unable to create UpdateService route: %s", problem)
            return ReconcileResult()

        # Reject an unrenderable spec before touching anything else.
        instance.spec.split_releases()

        try:
            dependencies = self._gather_dependencies(instance, conditions, deadline)
        except (PullSecretNotFoundError, NotFoundError):
            self._write_status(obj, status, conditions, deadline)
            raise

        bundle = self._builder.build(instance, dependencies)
        conditions.set_condition(CONDITION_RECONCILE_COMPLETED, STATUS_FALSE, "Reconcile started")

        error = self._run_steps(instance, bundle, conditions, status, deadline)
        if error is None:
            conditions.set_condition(CONDITION_RECONCILE_COMPLETED, STATUS_TRUE, "Success")

        self._write_status(obj, status, conditions, deadline)
        if error is not None:
            raise error
        return ReconcileResult(requeue_after=self._resync_period)

    # ------------------------------------------------------------------
    # Dependency lookups
    # ------------------------------------------------------------------
    def _gather_dependencies(
        self, instance: UpdateService, conditions: ConditionTracker, deadline: Deadline
    ) -> ExternalDependencies:
        return ExternalDependencies(
            pull_secret=self._find_pull_secret(conditions, deadline),
            trusted_ca=self._find_trusted_ca(instance, conditions, deadline),
            cluster_ca=self._find_cluster_ca(instance, conditions, deadline),
            proxy=self._proxy,
        )

    def _find_pull_secret(self, conditions: ConditionTracker, deadline: Deadline) -> Object:
        try:
            return self._store.get(KIND_SECRET, OPENSHIFT_CONFIG_NAMESPACE, NAME_PULL_SECRET, deadline=deadline)
        except NotFoundError as exc:
            self._fail(conditions, "PullSecretNotFound", exc)
            raise PullSecretNotFoundError(str(exc)) from exc

    def _find_trusted_ca(
        self, instance: UpdateService, conditions: ConditionTracker, deadline: Deadline
    ) -> Optional[Object]:
        try:
            image = self._store.get(KIND_IMAGE_CONFIG, "", IMAGE_CONFIG_NAME, deadline=deadline)
        except NotFoundError:
            self._ca_diagnostic(
                conditions,
                "FindAdditionalTrustedCAFailed",
                f"image.config.openshift.io not found for name {IMAGE_CONFIG_NAME}",
            )
            return None

        name = additional_trusted_ca_name(image)
        if not name:
            self._ca_diagnostic(
                conditions,
                "NotConfigured",
                "image.config.openshift.io.Spec.AdditionalTrustedCA.Name not set "
                f"for image name {IMAGE_CONFIG_NAME}",
            )
            return None

        try:
            source = self._store.get(KIND_CONFIG_MAP, OPENSHIFT_CONFIG_NAMESPACE, name, deadline=deadline)
        except NotFoundError:
            self._ca_diagnostic(
                conditions,
                "FindAdditionalTrustedCAFailed",
                "Found image.config.openshift.io.Spec.AdditionalTrustedCA.Name but did not find "
                f"expected ConfigMap (Name: {name}, Namespace: {OPENSHIFT_CONFIG_NAMESPACE})",
            )
            raise

        key = instance.spec.ca_config_map_key
        if key not in (source.get("data") or {}):
            self._ca_diagnostic(
                conditions,
                "EnsureAdditionalTrustedCAFailed",
                "Found ConfigMap referenced by ImageConfig.Spec.AdditionalTrustedCA.Name but did not "
                f"find key {key!r} for registry CA cert in ConfigMap "
                f"(Name: {name}, Namespace: {OPENSHIFT_CONFIG_NAMESPACE})",
            )
            return None
        return source

    def _find_cluster_ca(
        self, instance: UpdateService, conditions: ConditionTracker, deadline: Deadline
    ) -> Optional[Object]:
        if not self._proxy.configured:
            return None
        try:
            found = self._store.get(
                KIND_CONFIG_MAP, instance.namespace, NAME_CLUSTER_TRUSTED_CA_VOLUME, deadline=deadline
            )
        except NotFoundError:
            return None
        if NAME_CLUSTER_CERT_CONFIG_MAP_KEY not in (found.get("data") or {}):
            self._ca_diagnostic(
                conditions,
                "EnsureTrustedClusterCAFailed",
                f"Found cluster-wide CA but required key: {NAME_CLUSTER_CERT_CONFIG_MAP_KEY!r} not found",
            )
            return None
        return found

    # ------------------------------------------------------------------
    # Ensure steps
    # ------------------------------------------------------------------
    def _run_steps(
        self,
        instance: UpdateService,
        bundle: DesiredStateBundle,
        conditions: ConditionTracker,
        status: Object,
        deadline: Deadline,
    ) -> Optional[ReconcileStepError]:
        engine = self._engine

        def ensure(resource):
            return lambda: engine.ensure(resource, deadline)

        def trusted_ca() -> None:
            conditions.set_condition(CONDITION_REGISTRY_CA_CERT_FOUND, STATUS_TRUE, "CACertFound")
            engine.ensure(bundle.trusted_ca_config, deadline)

        def route() -> None:
            _, live = engine.ensure_route(
                bundle.policy_engine_route, bundle.legacy_policy_engine_route, deadline
            )
            try:
                status["policyEngineURI"] = ingress_uri(live)
            except ValueError as exc:
                self._fail(conditions, "RouteIngressFailed", exc)

        def deployment() -> None:
            try:
                digest = engine.ensure_graph_data_digest(instance, deadline)
            except ReconcileStepError as exc:
                self._log.error("ensuring GraphData image checksum annotation: %s", exc)
                digest = ""
            engine.ensure_deployment(bundle.deployment, digest, deadline)

        steps: List[Step] = [("config", "EnsureConfigMapFailed", ensure(bundle.graph_builder_config))]
        if bundle.pull_secret is not None:
            steps.append(("pull secret", "EnsureSecretFailed", ensure(bundle.pull_secret)))
        steps.append(("env config", "EnsureConfigMapFailed", ensure(bundle.env_config)))
        if bundle.cluster_ca_config is not None:
            steps.append(
                ("cluster CA", "EnsureConfigMapFailedForClusterCA", ensure(bundle.cluster_ca_config))
            )
        if bundle.trusted_ca_config is not None:
            steps.append(("trusted CA", "EnsureConfigMapFailed", trusted_ca))
        steps.extend(
            [
                ("graph-builder service", "EnsureServiceFailed", ensure(bundle.graph_builder_service)),
                ("policy-engine service", "EnsureServiceFailed", ensure(bundle.policy_engine_service)),
                ("pod disruption budget", "EnsurePDBFailed", ensure(bundle.pod_disruption_budget)),
                ("network policy", "EnsureNetworkPolicyFailed", ensure(bundle.network_policy)),
                ("route", "EnsureRouteFailed", route),
                ("deployment", "EnsureDeploymentFailed", deployment),
            ]
        )

        for step, reason, run in steps:
            try:
                run()
            except InvariantViolation as exc:
                self._fail(conditions, "UpdateDeploymentFailed", exc)
                return ReconcileStepError(step, "UpdateDeploymentFailed", exc)
            except StoreError as exc:
                self._fail(conditions, reason, exc)
                return ReconcileStepError(step, reason, exc)
        return None

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def _fail(self, conditions: ConditionTracker, reason: str, exc: BaseException) -> None:
        conditions.set_condition(CONDITION_RECONCILE_COMPLETED, STATUS_FALSE, reason, str(exc))
        self._log.error("%s: %s", reason, exc)

    def _ca_diagnostic(self, conditions: ConditionTracker, reason: str, message: str) -> None:
        conditions.set_condition(CONDITION_REGISTRY_CA_CERT_FOUND, STATUS_FALSE, reason, message)
        self._log.info(message)

    def _write_status(
        self, obj: Object, status: Object, conditions: ConditionTracker, deadline: Deadline
    ) -> None:
        status["conditions"] = conditions.as_list()
        obj["status"] = status
        try:
            self._store.update_status(obj, deadline=deadline)
        except StoreError as exc:
            self._log.error("Failed to update Status: %s", exc)
