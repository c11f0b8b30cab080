"""Desired-state rendering for an UpdateService instance.

:class:`DesiredStateBuilder` turns one :class:`~updateservice.config.UpdateService`
plus the external objects discovered for it into a
:class:`DesiredStateBundle`: every managed object the operator owns for that
instance, fully rendered, before anything is written to the cluster.

Building is pure. It performs no I/O and raises
:class:`~updateservice.errors.SpecValidationError` before producing a single
descriptor when the spec cannot be rendered, so a pass is all-or-nothing.

Some descriptors depend on others built earlier in the same call: the
Deployment embeds the fingerprints of both configuration ConfigMaps as
pod-template annotations (mounted config changes are otherwise invisible to
the Deployment controller), and the volume list and graph-builder mounts grow
only when the optional CA bundles were rendered.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime
from string import Template
from typing import Callable, Dict, List, Mapping, Optional

from .config import (
    KIND_CONFIG_MAP,
    KIND_DEPLOYMENT,
    KIND_NETWORK_POLICY,
    KIND_POD,
    KIND_POD_DISRUPTION_BUDGET,
    KIND_ROUTE,
    KIND_SECRET,
    KIND_SERVICE,
    ContainerRole,
    ExternalDependencies,
    ManagedResource,
    MergePolicy,
    Object,
    OwnerReference,
    UpdateService,
    new_object,
)
from .fingerprint import fingerprint
from .names import (
    CLUSTER_CA_MOUNT_DIR,
    CREATE_ONLY_ANNOTATION,
    DESCRIPTION_ANNOTATION,
    ENV_CONFIG_HASH_ANNOTATION,
    GRAPH_BUILDER_CONFIG_HASH_ANNOTATION,
    GRAPH_DATA_DIR,
    INJECT_CA_BUNDLE_LABEL,
    LAST_REFRESH_ANNOTATION,
    NAME_CLUSTER_TRUSTED_CA_VOLUME,
    NAME_CONFIGS_VOLUME,
    NAME_GRAPH_DATA_DIGEST_POD,
    NAME_GRAPH_DATA_VOLUME,
    NAME_PULL_SECRET,
    NAME_TRUSTED_CA_VOLUME,
    SSL_CERT_DIR,
    min_available_for,
    name_additional_trusted_ca,
    name_config,
    name_deployment,
    name_env_config,
    name_graph_builder_service,
    name_legacy_policy_engine_route,
    name_network_policy,
    name_pod_disruption_budget,
    name_policy_engine_route,
    name_policy_engine_service,
    name_pull_secret_copy,
)

GRAPH_BUILDER_TOML = Template(
    '''verbosity = "vvv"

[service]
pause_secs = 300
address = "::"
port = 8080

[status]
address = "::"
port = 9080

[[plugin_settings]]
name = "release-scrape-dockerv2"
registry = "$registry"
repository = "$repository"
fetch_concurrency = 16
credentials_path = "/var/lib/cincinnati/registry-credentials/.dockerconfigjson"

[[plugin_settings]]
name = "openshift-secondary-metadata-parse"
data_directory = "/var/lib/cincinnati/graph-data"

[[plugin_settings]]
name = "edge-add-remove"'''
)

ENV_CONFIG_DATA: Mapping[str, str] = {
    "gb.rust_backtrace": "0",
    "pe.address": "::",
    "pe.log.verbosity": "vv",
    "pe.mandatory_client_parameters": "channel",
    "pe.rust_backtrace": "0",
    "pe.status.address": "::",
    "pe.upstream": "http://localhost:8080/v1/graph",
    "m.rust_backtrace": "0",
}

POLICY_ENGINE_DESCRIPTION = (
    "It exposes views of the update graph by applying a set of filters "
    "which are defined within the particular Policy Engine instance. "
    "See https://github.com/openshift/cincinnati/blob/master/docs/design/cincinnati.md#policy-engine "
    "for more details"
)

CONFIG_FILE_MODE = 0o644

CONTAINER_RESOURCES: Mapping[str, Mapping[str, str]] = {
    "limits": {"cpu": "750m", "memory": "512Mi"},
    "requests": {"cpu": "150m", "memory": "64Mi"},
}


@dataclass(frozen=True)
class DesiredStateBundle:
    """Every object one pass converges, rendered up-front."""

    graph_builder_config: ManagedResource
    graph_builder_config_hash: str
    env_config: ManagedResource
    env_config_hash: str
    trusted_ca_config: Optional[ManagedResource]
    cluster_ca_config: Optional[ManagedResource]
    pull_secret: Optional[ManagedResource]
    deployment: ManagedResource
    containers: Mapping[ContainerRole, Object]
    graph_builder_service: ManagedResource
    policy_engine_service: ManagedResource
    policy_engine_route: ManagedResource
    legacy_policy_engine_route: ManagedResource
    pod_disruption_budget: ManagedResource
    network_policy: ManagedResource

    def container(self, role: ContainerRole) -> Optional[Object]:
        return self.containers.get(role)

    def descriptors(self) -> List[ManagedResource]:
        """Return the descriptors in the order they were built.

        The legacy route is a lookup target only and is not included.
        """

        ordered = [
            self.graph_builder_config,
            self.env_config,
            self.trusted_ca_config,
            self.cluster_ca_config,
            self.pull_secret,
            self.deployment,
            self.graph_builder_service,
            self.policy_engine_service,
            self.policy_engine_route,
            self.pod_disruption_budget,
            self.network_policy,
        ]
        return [d for d in ordered if d is not None]


def graph_data_digest_pod(instance: UpdateService, refreshed_at: datetime) -> ManagedResource:
    """Short-lived Pod that pulls the graph-data image to learn its digest."""

    body = new_object(
        KIND_POD,
        NAME_GRAPH_DATA_DIGEST_POD,
        instance.namespace,
        annotations={LAST_REFRESH_ANNOTATION: refreshed_at.strftime("%d %b %y %H:%M UTC")},
    )
    body["spec"] = {
        "restartPolicy": "Never",
        "containers": [
            {
                "name": ContainerRole.GRAPH_DATA.container_name,
                "image": instance.spec.graph_data_image,
                "imagePullPolicy": "Always",
                "command": ["/bin/sh", "-c", "--"],
                "args": ["sleep 300;"],
            }
        ],
    }
    return ManagedResource(
        KIND_POD,
        instance.namespace,
        NAME_GRAPH_DATA_DIGEST_POD,
        body,
        MergePolicy.CREATE_ONLY,
        instance.owner_reference(),
    )


def _config_map_env(name: str, key: str, config_map: str) -> Object:
    return {
        "name": name,
        "valueFrom": {"configMapKeyRef": {"key": key, "name": config_map}},
    }


def _http_probe(path: str, port: int, initial_delay: int, period: int) -> Object:
    return {
        "failureThreshold": 3,
        "successThreshold": 1,
        "initialDelaySeconds": initial_delay,
        "periodSeconds": period,
        "timeoutSeconds": 3,
        "httpGet": {"path": path, "port": port, "scheme": "HTTP"},
    }


def _port(name: str, port: int) -> Object:
    return {"name": name, "containerPort": port, "protocol": "TCP"}


class DesiredStateBuilder:
    """Render the managed objects of an UpdateService instance.

    Args:
        operand_image: Image providing both the graph-builder and policy-engine binaries.
    """

    def __init__(self, operand_image: str) -> None:
        self._operand_image = operand_image
        self._container_builders: Dict[ContainerRole, Callable[..., Object]] = {
            ContainerRole.GRAPH_BUILDER: self._graph_builder_container,
            ContainerRole.POLICY_ENGINE: self._policy_engine_container,
            ContainerRole.GRAPH_DATA: self._graph_data_init_container,
        }

    def build(
        self,
        instance: UpdateService,
        dependencies: Optional[ExternalDependencies] = None,
    ) -> DesiredStateBundle:
        deps = dependencies or ExternalDependencies()
        owner = instance.owner_reference()

        # Validation happens here, before anything else is rendered.
        registry, repository = instance.spec.split_releases()

        gb_config = self._graph_builder_config(instance, owner, registry, repository)
        gb_config_hash = fingerprint(gb_config.body["data"])
        env_config = self._env_config(instance, owner)
        env_config_hash = fingerprint(env_config.body["data"])

        trusted_ca = self._trusted_ca_config(instance, owner, deps.trusted_ca)
        cluster_ca = self._cluster_ca_config(instance, owner, deps)
        pull_secret = self._pull_secret(instance, owner, deps.pull_secret)

        volumes = self._volumes(instance, trusted_ca is not None, cluster_ca is not None)
        containers: Dict[ContainerRole, Object] = {}
        for role in ContainerRole:
            if role is ContainerRole.GRAPH_DATA and not instance.spec.graph_data_image:
                continue
            containers[role] = self._container_builders[role](
                instance,
                deps=deps,
                trusted_ca=trusted_ca is not None,
                cluster_ca=cluster_ca is not None,
            )

        deployment = self._deployment(
            instance, owner, volumes, containers, gb_config_hash, env_config_hash
        )

        return DesiredStateBundle(
            graph_builder_config=gb_config,
            graph_builder_config_hash=gb_config_hash,
            env_config=env_config,
            env_config_hash=env_config_hash,
            trusted_ca_config=trusted_ca,
            cluster_ca_config=cluster_ca,
            pull_secret=pull_secret,
            deployment=deployment,
            containers=containers,
            graph_builder_service=self._graph_builder_service(instance, owner),
            policy_engine_service=self._policy_engine_service(instance, owner),
            policy_engine_route=self._route(
                instance, owner, name_policy_engine_route(instance.name)
            ),
            legacy_policy_engine_route=self._route(
                instance, owner, name_legacy_policy_engine_route(instance.name)
            ),
            pod_disruption_budget=self._pod_disruption_budget(instance, owner),
            network_policy=self._network_policy(instance, owner),
        )

    # ------------------------------------------------------------------
    # Configuration stores
    # ------------------------------------------------------------------
    def _graph_builder_config(
        self, instance: UpdateService, owner: OwnerReference, registry: str, repository: str
    ) -> ManagedResource:
        name = name_config(instance.name)
        body = new_object(
            KIND_CONFIG_MAP,
            name,
            instance.namespace,
            annotations={
                DESCRIPTION_ANNOTATION: "This ConfigMap contains the configuration file for the graph-builder",
            },
        )
        body["data"] = {
            "gb.toml": GRAPH_BUILDER_TOML.substitute(registry=registry, repository=repository)
        }
        return ManagedResource(KIND_CONFIG_MAP, instance.namespace, name, body, MergePolicy.DATA, owner)

    def _env_config(self, instance: UpdateService, owner: OwnerReference) -> ManagedResource:
        name = name_env_config(instance.name)
        body = new_object(
            KIND_CONFIG_MAP,
            name,
            instance.namespace,
            annotations={
                DESCRIPTION_ANNOTATION: "This ConfigMap contains the environment information "
                "shared by the containers of UpdateService",
            },
        )
        body["data"] = dict(ENV_CONFIG_DATA)
        return ManagedResource(KIND_CONFIG_MAP, instance.namespace, name, body, MergePolicy.DATA, owner)

    def _trusted_ca_config(
        self, instance: UpdateService, owner: OwnerReference, source: Optional[Object]
    ) -> Optional[ManagedResource]:
        if source is None:
            return None
        name = name_additional_trusted_ca(instance.name)
        body = new_object(
            KIND_CONFIG_MAP,
            name,
            instance.namespace,
            annotations={
                DESCRIPTION_ANNOTATION: "This ConfigMap contains additional certificate authorities "
                "to be trusted during image registry access.",
            },
        )
        body["data"] = dict(source.get("data") or {})
        return ManagedResource(KIND_CONFIG_MAP, instance.namespace, name, body, MergePolicy.DATA, owner)

    def _cluster_ca_config(
        self, instance: UpdateService, owner: OwnerReference, deps: ExternalDependencies
    ) -> Optional[ManagedResource]:
        # Without a cluster-wide proxy there is no proxy CA bundle to trust.
        if not deps.proxy.configured:
            return None

        if deps.cluster_ca is not None:
            body = copy.deepcopy(deps.cluster_ca)
        else:
            # The platform fills in the bundle once the injection label is seen.
            body = new_object(
                KIND_CONFIG_MAP,
                NAME_CLUSTER_TRUSTED_CA_VOLUME,
                instance.namespace,
                labels={INJECT_CA_BUNDLE_LABEL: "true"},
                annotations={CREATE_ONLY_ANNOTATION: "true"},
            )
        return ManagedResource(
            KIND_CONFIG_MAP,
            instance.namespace,
            NAME_CLUSTER_TRUSTED_CA_VOLUME,
            body,
            MergePolicy.CREATE_ONLY,
            owner,
        )

    def _pull_secret(
        self, instance: UpdateService, owner: OwnerReference, source: Optional[Object]
    ) -> Optional[ManagedResource]:
        if source is None:
            return None
        name = name_pull_secret_copy(instance.name)
        body = new_object(
            KIND_SECRET,
            name,
            instance.namespace,
            annotations={
                DESCRIPTION_ANNOTATION: "It contains the pull credentials from the global pull secret for the cluster",
            },
        )
        if source.get("type"):
            body["type"] = source["type"]
        body["data"] = dict(source.get("data") or {})
        return ManagedResource(KIND_SECRET, instance.namespace, name, body, MergePolicy.DATA, owner)

    # ------------------------------------------------------------------
    # Workload
    # ------------------------------------------------------------------
    def _volumes(self, instance: UpdateService, trusted_ca: bool, cluster_ca: bool) -> List[Object]:
        volumes: List[Object] = [
            {
                "name": NAME_CONFIGS_VOLUME,
                "configMap": {"name": name_config(instance.name), "defaultMode": CONFIG_FILE_MODE},
            },
            {"name": NAME_GRAPH_DATA_VOLUME, "emptyDir": {}},
            {
                "name": NAME_PULL_SECRET,
                "secret": {
                    "secretName": name_pull_secret_copy(instance.name),
                    "defaultMode": CONFIG_FILE_MODE,
                },
            },
        ]
        if trusted_ca:
            volumes.append(
                {
                    "name": NAME_TRUSTED_CA_VOLUME,
                    "configMap": {
                        "name": name_additional_trusted_ca(instance.name),
                        "defaultMode": CONFIG_FILE_MODE,
                        "items": [
                            {"key": instance.spec.ca_config_map_key, "path": "tls-ca-bundle.pem"}
                        ],
                    },
                }
            )
        if cluster_ca:
            volumes.append(
                {
                    "name": NAME_CLUSTER_TRUSTED_CA_VOLUME,
                    "configMap": {
                        "name": NAME_CLUSTER_TRUSTED_CA_VOLUME,
                        "defaultMode": CONFIG_FILE_MODE,
                    },
                }
            )
        return volumes

    def _graph_builder_volume_mounts(self, trusted_ca: bool, cluster_ca: bool) -> List[Object]:
        mounts: List[Object] = [
            {"name": NAME_CONFIGS_VOLUME, "readOnly": True, "mountPath": "/etc/configs"},
            {"name": NAME_GRAPH_DATA_VOLUME, "mountPath": GRAPH_DATA_DIR},
            {
                "name": NAME_PULL_SECRET,
                "readOnly": True,
                "mountPath": "/var/lib/cincinnati/registry-credentials",
            },
        ]
        if trusted_ca:
            mounts.append({"name": NAME_TRUSTED_CA_VOLUME, "readOnly": True, "mountPath": SSL_CERT_DIR})
        if cluster_ca:
            mounts.append(
                {"name": NAME_CLUSTER_TRUSTED_CA_VOLUME, "readOnly": True, "mountPath": CLUSTER_CA_MOUNT_DIR}
            )
        return mounts

    def _graph_builder_container(
        self, instance: UpdateService, *, deps: ExternalDependencies, trusted_ca: bool, cluster_ca: bool
    ) -> Object:
        env = [_config_map_env("RUST_BACKTRACE", "gb.rust_backtrace", name_env_config(instance.name))]
        env.extend(deps.proxy.env())
        return {
            "name": ContainerRole.GRAPH_BUILDER.container_name,
            "image": self._operand_image,
            "imagePullPolicy": "IfNotPresent",
            "command": ["/usr/bin/graph-builder"],
            "args": ["-c", "/etc/configs/gb.toml"],
            "ports": [_port("graph-builder", 8080), _port("status-gb", 9080)],
            "env": env,
            "resources": copy.deepcopy(dict(CONTAINER_RESOURCES)),
            "volumeMounts": self._graph_builder_volume_mounts(trusted_ca, cluster_ca),
            "livenessProbe": _http_probe("/liveness", 9080, 3, 10),
            "readinessProbe": _http_probe("/readiness", 9080, 3, 10),
        }

    def _policy_engine_container(self, instance: UpdateService, **_: object) -> Object:
        env_config = name_env_config(instance.name)
        return {
            "name": ContainerRole.POLICY_ENGINE.container_name,
            "image": self._operand_image,
            "imagePullPolicy": "IfNotPresent",
            "command": ["/usr/bin/policy-engine"],
            "args": [
                "-$(PE_LOG_VERBOSITY)",
                "--service.address",
                "$(ADDRESS)",
                "--service.mandatory_client_parameters",
                "$(PE_MANDATORY_CLIENT_PARAMETERS)",
                "--service.path_prefix",
                "/api/upgrades_info",
                "--service.port",
                "8081",
                "--status.address",
                "$(PE_STATUS_ADDRESS)",
                "--status.port",
                "9081",
                "--upstream.cincinnati.url",
                "$(UPSTREAM)",
            ],
            "ports": [_port("policy-engine", 8081), _port("status-pe", 9081)],
            "env": [
                _config_map_env("ADDRESS", "pe.address", env_config),
                _config_map_env("PE_STATUS_ADDRESS", "pe.status.address", env_config),
                _config_map_env("UPSTREAM", "pe.upstream", env_config),
                _config_map_env("PE_LOG_VERBOSITY", "pe.log.verbosity", env_config),
                _config_map_env(
                    "PE_MANDATORY_CLIENT_PARAMETERS", "pe.mandatory_client_parameters", env_config
                ),
                _config_map_env("RUST_BACKTRACE", "pe.rust_backtrace", env_config),
            ],
            "resources": copy.deepcopy(dict(CONTAINER_RESOURCES)),
            "livenessProbe": _http_probe("/livez", 9081, 120, 30),
            "readinessProbe": _http_probe("/readyz", 9081, 120, 30),
        }

    def _graph_data_init_container(self, instance: UpdateService, **_: object) -> Object:
        return {
            "name": ContainerRole.GRAPH_DATA.container_name,
            "image": instance.spec.graph_data_image,
            "imagePullPolicy": "Always",
            "volumeMounts": [{"name": NAME_GRAPH_DATA_VOLUME, "mountPath": GRAPH_DATA_DIR}],
        }

    def _deployment(
        self,
        instance: UpdateService,
        owner: OwnerReference,
        volumes: List[Object],
        containers: Mapping[ContainerRole, Object],
        gb_config_hash: str,
        env_config_hash: str,
    ) -> ManagedResource:
        name = name_deployment(instance.name)
        body = new_object(
            KIND_DEPLOYMENT,
            name,
            instance.namespace,
            annotations={
                DESCRIPTION_ANNOTATION: "This deployment launches the components for the "
                f"OpenShift UpdateService {instance.name}",
            },
        )
        pod_spec: Object = {
            "volumes": copy.deepcopy(volumes),
            "containers": [
                copy.deepcopy(container)
                for role, container in containers.items()
                if not role.is_init
            ],
        }
        init_containers = [
            copy.deepcopy(container) for role, container in containers.items() if role.is_init
        ]
        if init_containers:
            pod_spec["initContainers"] = init_containers

        body["spec"] = {
            "replicas": instance.spec.replicas,
            "selector": {"matchLabels": {"app": name}},
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {"maxUnavailable": "50%", "maxSurge": "100%"},
            },
            "template": {
                "metadata": {
                    "labels": {"app": name, "deployment": name},
                    "annotations": {
                        GRAPH_BUILDER_CONFIG_HASH_ANNOTATION: gb_config_hash,
                        ENV_CONFIG_HASH_ANNOTATION: env_config_hash,
                    },
                },
                "spec": pod_spec,
            },
        }
        return ManagedResource(KIND_DEPLOYMENT, instance.namespace, name, body, MergePolicy.DEPLOYMENT, owner)

    # ------------------------------------------------------------------
    # Network-facing objects
    # ------------------------------------------------------------------
    def _service(
        self,
        instance: UpdateService,
        owner: OwnerReference,
        name: str,
        description: str,
        ports: List[Object],
    ) -> ManagedResource:
        body = new_object(
            KIND_SERVICE,
            name,
            instance.namespace,
            labels={"app": name},
            annotations={DESCRIPTION_ANNOTATION: description},
        )
        body["spec"] = {
            "type": "ClusterIP",
            "ports": ports,
            "selector": {"deployment": name_deployment(instance.name)},
            "sessionAffinity": "None",
        }
        return ManagedResource(KIND_SERVICE, instance.namespace, name, body, MergePolicy.SERVICE, owner)

    def _graph_builder_service(self, instance: UpdateService, owner: OwnerReference) -> ManagedResource:
        return self._service(
            instance,
            owner,
            name_graph_builder_service(instance.name),
            "This Service exposes a client-agnostic update graph to other clients within the cluster. "
            "This allows convenient in-cluster access to those graphs, and also allows platform "
            "monitoring to scrape graph-builder containers for Prometheus metrics.",
            [
                {"name": "graph-builder", "port": 8080, "targetPort": 8080, "protocol": "TCP"},
                {"name": "status-gb", "port": 9080, "targetPort": 9080, "protocol": "TCP"},
            ],
        )

    def _policy_engine_service(self, instance: UpdateService, owner: OwnerReference) -> ManagedResource:
        return self._service(
            instance,
            owner,
            name_policy_engine_service(instance.name),
            POLICY_ENGINE_DESCRIPTION,
            [
                {"name": "policy-engine", "port": 80, "targetPort": 8081, "protocol": "TCP"},
                {"name": "status-pe", "port": 9081, "targetPort": 9081, "protocol": "TCP"},
            ],
        )

    def _route(self, instance: UpdateService, owner: OwnerReference, name: str) -> ManagedResource:
        body = new_object(
            KIND_ROUTE,
            name,
            instance.namespace,
            labels={"app": name_deployment(instance.name)},
            annotations={DESCRIPTION_ANNOTATION: POLICY_ENGINE_DESCRIPTION},
        )
        body["spec"] = {
            "port": {"targetPort": "policy-engine"},
            "to": {"kind": "Service", "name": name_policy_engine_service(instance.name)},
            "tls": {"termination": "edge", "insecureEdgeTerminationPolicy": "None"},
        }
        return ManagedResource(KIND_ROUTE, instance.namespace, name, body, MergePolicy.ROUTE, owner)

    def _pod_disruption_budget(self, instance: UpdateService, owner: OwnerReference) -> ManagedResource:
        name = name_pod_disruption_budget(instance.name)
        body = new_object(
            KIND_POD_DISRUPTION_BUDGET,
            name,
            instance.namespace,
            annotations={
                DESCRIPTION_ANNOTATION: "This PodDisruptionBudget blocks graceful evictions "
                "(but cannot guard against all external disruption) "
                "to try and keep at least one Pod running at all times, if the Update Service "
                "instance specifies two or more replicas.",
            },
        )
        body["spec"] = {
            "minAvailable": min_available_for(instance.spec.replicas),
            "selector": {"matchLabels": {"app": name_deployment(instance.name)}},
        }
        return ManagedResource(
            KIND_POD_DISRUPTION_BUDGET, instance.namespace, name, body, MergePolicy.SPEC, owner
        )

    def _network_policy(self, instance: UpdateService, owner: OwnerReference) -> ManagedResource:
        name = name_network_policy(instance.name)
        body = new_object(
            KIND_NETWORK_POLICY,
            name,
            instance.namespace,
            labels={"app": instance.name},
            annotations={
                DESCRIPTION_ANNOTATION: "This NetworkPolicy allows all egress, to support graph-builder "
                "scraping and DNS. It allows ingress from the router, to support serving policy-engine "
                "responses. All other ingress is blocked, including, for now, metrics scraping.",
            },
        )
        body["spec"] = {
            "podSelector": {"matchLabels": {"app": name_deployment(instance.name)}},
            "policyTypes": ["Ingress", "Egress"],
            "ingress": [
                {
                    # router -> policy-engine
                    "from": [
                        {
                            "namespaceSelector": {
                                "matchLabels": {"policy-group.network.openshift.io/ingress": ""}
                            }
                        }
                    ],
                    "ports": [{"protocol": "TCP", "port": "policy-engine"}],
                }
            ],
            "egress": [
                # registry access, possibly through a proxy
                {"ports": [{"protocol": "TCP"}]},
                {
                    "to": [
                        {
                            "namespaceSelector": {
                                "matchLabels": {"kubernetes.io/metadata.name": "openshift-dns"}
                            },
                            "podSelector": {
                                "matchLabels": {"dns.operator.openshift.io/daemonset-dns": "default"}
                            },
                        }
                    ],
                    "ports": [
                        {"protocol": "TCP", "port": 5353},
                        {"protocol": "UDP", "port": 5353},
                    ],
                },
            ],
        }
        return ManagedResource(KIND_NETWORK_POLICY, instance.namespace, name, body, MergePolicy.SPEC, owner)
