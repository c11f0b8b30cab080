"""Well-known object names, keys and annotations used by the operator."""

from __future__ import annotations

# Containers of the operand Deployment.
NAME_CONTAINER_GRAPH_BUILDER = "graph-builder"
NAME_CONTAINER_POLICY_ENGINE = "policy-engine"
NAME_INIT_CONTAINER_GRAPH_DATA = "graph-data"

# Shared system namespace holding cluster-wide configuration.
OPENSHIFT_CONFIG_NAMESPACE = "openshift-config"

# Cluster-scoped singleton describing image registry configuration.
IMAGE_CONFIG_NAME = "cluster"

NAME_PULL_SECRET = "pull-secret"
NAME_TRUSTED_CA_VOLUME = "trusted-ca"
NAME_CERT_CONFIG_MAP_KEY = "updateservice-registry"
NAME_CLUSTER_TRUSTED_CA_VOLUME = "cluster-trusted-ca"
NAME_CLUSTER_CERT_CONFIG_MAP_KEY = "ca-bundle.crt"
NAME_GRAPH_DATA_VOLUME = "cincinnati-graph-data"
NAME_CONFIGS_VOLUME = "configs"
NAME_GRAPH_DATA_DIGEST_POD = "graph-data-tag-digest"

CLUSTER_CA_MOUNT_DIR = "/etc/pki/ca-trust/extracted/cluster-ca/"
SSL_CERT_DIR = "/etc/pki/ca-trust/extracted/pem"
GRAPH_DATA_DIR = "/var/lib/cincinnati/graph-data"

ANNOTATION_PREFIX = "updateservice.operator.openshift.io"
GRAPH_BUILDER_CONFIG_HASH_ANNOTATION = f"{ANNOTATION_PREFIX}/graph-builder-config-hash"
ENV_CONFIG_HASH_ANNOTATION = f"{ANNOTATION_PREFIX}/env-config-hash"
GRAPH_DATA_IMAGE_ANNOTATION = f"{ANNOTATION_PREFIX}/graph-data-image"
LAST_REFRESH_ANNOTATION = f"{ANNOTATION_PREFIX}/last-refresh"
DESCRIPTION_ANNOTATION = "kubernetes.io/description"
INJECT_CA_BUNDLE_LABEL = "config.openshift.io/inject-trusted-cabundle"
CREATE_ONLY_ANNOTATION = "release.openshift.io/create-only"

# RFC 1123 label rules applied to the generated route host prefix.
DNS1123_LABEL_FMT = "^[a-z]([-a-z0-9]*[a-z0-9])?$"
DNS1123_LABEL_MAX_LENGTH = 63


def name_deployment(name: str) -> str:
    return name


def name_pod_disruption_budget(name: str) -> str:
    return name


def name_network_policy(name: str) -> str:
    return name


def name_env_config(name: str) -> str:
    return f"{name}-env"


def name_config(name: str) -> str:
    return f"{name}-config"


def name_policy_engine_service(name: str) -> str:
    return f"{name}-policy-engine"


def name_graph_builder_service(name: str) -> str:
    return f"{name}-graph-builder"


def name_policy_engine_route(name: str) -> str:
    return f"{name}-route"


def name_legacy_policy_engine_route(name: str) -> str:
    """Route name used before the rename; still honoured while it exists."""

    return f"{name_policy_engine_service(name)}-route"


def name_additional_trusted_ca(name: str) -> str:
    return f"{name}-trusted-ca"


def name_pull_secret_copy(name: str) -> str:
    return f"{name}-{NAME_PULL_SECRET}"


def min_available_for(replicas: int) -> int:
    """Return the PodDisruptionBudget ``minAvailable`` for ``replicas``.

    A single replica must not block node drains, so it is allowed to go to
    zero. Two or more replicas keep at least one Pod around.
    """

    return 1 if replicas >= 2 else 0
