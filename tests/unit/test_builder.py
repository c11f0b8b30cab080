from datetime import datetime, timezone

import pytest

from updateservice.builder import DesiredStateBuilder, graph_data_digest_pod
from updateservice.config import (
    ContainerRole,
    ExternalDependencies,
    MergePolicy,
    ProxySettings,
    UpdateService,
    UpdateServiceSpec,
)
from updateservice.errors import SpecValidationError
from updateservice.names import (
    CREATE_ONLY_ANNOTATION,
    DESCRIPTION_ANNOTATION,
    ENV_CONFIG_HASH_ANNOTATION,
    GRAPH_BUILDER_CONFIG_HASH_ANNOTATION,
    INJECT_CA_BUNDLE_LABEL,
    LAST_REFRESH_ANNOTATION,
)

OPERAND_IMAGE = "quay.io/cincinnati/cincinnati:latest"


def build_instance(**spec) -> UpdateService:
    values = {
        "replicas": 1,
        "releases": "quay.io/openshift-release-dev/ocp-release",
        "graph_data_image": "quay.io/example/graph-data:latest",
    }
    values.update(spec)
    return UpdateService(
        name="example",
        namespace="openshift-update-service",
        uid="1234",
        spec=UpdateServiceSpec(**values),
    )


def pull_secret():
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": "pull-secret", "namespace": "openshift-config"},
        "type": "kubernetes.io/dockerconfigjson",
        "data": {".dockerconfigjson": "e30="},
    }


def trusted_ca():
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "registry-ca", "namespace": "openshift-config"},
        "data": {"updateservice-registry": "-----BEGIN CERTIFICATE-----"},
    }


def test_bundle_contains_expected_descriptors():
    bundle = DesiredStateBuilder(OPERAND_IMAGE).build(
        build_instance(), ExternalDependencies(pull_secret=pull_secret())
    )

    names = [(d.kind, d.name) for d in bundle.descriptors()]
    assert names == [
        ("ConfigMap", "example-config"),
        ("ConfigMap", "example-env"),
        ("Secret", "example-pull-secret"),
        ("Deployment", "example"),
        ("Service", "example-graph-builder"),
        ("Service", "example-policy-engine"),
        ("Route", "example-route"),
        ("PodDisruptionBudget", "example"),
        ("NetworkPolicy", "example"),
    ]
    assert bundle.legacy_policy_engine_route.name == "example-policy-engine-route"
    for descriptor in bundle.descriptors():
        assert descriptor.namespace == "openshift-update-service"
        assert DESCRIPTION_ANNOTATION in descriptor.body["metadata"]["annotations"]
        assert descriptor.owner.uid == "1234"


def test_graph_builder_config_substitutes_registry_and_repository():
    bundle = DesiredStateBuilder(OPERAND_IMAGE).build(build_instance())

    toml = bundle.graph_builder_config.body["data"]["gb.toml"]
    assert 'registry = "quay.io"' in toml
    assert 'repository = "openshift-release-dev/ocp-release"' in toml
    assert bundle.graph_builder_config.policy is MergePolicy.DATA


def test_deployment_carries_config_fingerprints():
    bundle = DesiredStateBuilder(OPERAND_IMAGE).build(build_instance())

    annotations = bundle.deployment.body["spec"]["template"]["metadata"]["annotations"]
    assert annotations[GRAPH_BUILDER_CONFIG_HASH_ANNOTATION] == bundle.graph_builder_config_hash
    assert annotations[ENV_CONFIG_HASH_ANNOTATION] == bundle.env_config_hash


def test_changed_releases_change_only_the_config_fingerprint():
    builder = DesiredStateBuilder(OPERAND_IMAGE)
    before = builder.build(build_instance())
    after = builder.build(build_instance(releases="registry.example.com/mirror/ocp-release"))

    assert before.graph_builder_config_hash != after.graph_builder_config_hash
    assert before.env_config_hash == after.env_config_hash
    before_pod = before.deployment.body["spec"]["template"]["spec"]
    after_pod = after.deployment.body["spec"]["template"]["spec"]
    assert before_pod["containers"] == after_pod["containers"]


def test_deployment_layout():
    bundle = DesiredStateBuilder(OPERAND_IMAGE).build(build_instance(replicas=3))

    spec = bundle.deployment.body["spec"]
    assert spec["replicas"] == 3
    assert spec["selector"] == {"matchLabels": {"app": "example"}}
    assert spec["strategy"]["rollingUpdate"] == {"maxUnavailable": "50%", "maxSurge": "100%"}
    assert spec["template"]["metadata"]["labels"] == {"app": "example", "deployment": "example"}

    pod = spec["template"]["spec"]
    assert [c["name"] for c in pod["containers"]] == ["graph-builder", "policy-engine"]
    assert [c["name"] for c in pod["initContainers"]] == ["graph-data"]
    assert [v["name"] for v in pod["volumes"]] == ["configs", "cincinnati-graph-data", "pull-secret"]
    for container in pod["containers"]:
        assert container["image"] == OPERAND_IMAGE
    assert pod["initContainers"][0]["image"] == "quay.io/example/graph-data:latest"


def test_init_container_omitted_without_graph_data_image():
    bundle = DesiredStateBuilder(OPERAND_IMAGE).build(build_instance(graph_data_image=""))

    pod = bundle.deployment.body["spec"]["template"]["spec"]
    assert "initContainers" not in pod
    assert bundle.container(ContainerRole.GRAPH_DATA) is None
    assert bundle.container(ContainerRole.GRAPH_BUILDER) is not None


def test_trusted_ca_adds_volume_and_mount():
    bundle = DesiredStateBuilder(OPERAND_IMAGE).build(
        build_instance(), ExternalDependencies(trusted_ca=trusted_ca())
    )

    assert bundle.trusted_ca_config.name == "example-trusted-ca"
    assert bundle.trusted_ca_config.body["data"] == trusted_ca()["data"]
    pod = bundle.deployment.body["spec"]["template"]["spec"]
    volume = next(v for v in pod["volumes"] if v["name"] == "trusted-ca")
    assert volume["configMap"]["name"] == "example-trusted-ca"
    assert volume["configMap"]["items"] == [{"key": "updateservice-registry", "path": "tls-ca-bundle.pem"}]
    mounts = bundle.container(ContainerRole.GRAPH_BUILDER)["volumeMounts"]
    assert {"name": "trusted-ca", "readOnly": True, "mountPath": "/etc/pki/ca-trust/extracted/pem"} in mounts


def test_cluster_ca_placeholder_only_with_proxy():
    builder = DesiredStateBuilder(OPERAND_IMAGE)
    assert builder.build(build_instance()).cluster_ca_config is None

    proxy = ProxySettings(https_proxy="http://proxy.example.com:3128")
    bundle = builder.build(build_instance(), ExternalDependencies(proxy=proxy))

    cluster_ca = bundle.cluster_ca_config
    assert cluster_ca.name == "cluster-trusted-ca"
    assert cluster_ca.policy is MergePolicy.CREATE_ONLY
    assert cluster_ca.body["metadata"]["labels"] == {INJECT_CA_BUNDLE_LABEL: "true"}
    assert cluster_ca.body["metadata"]["annotations"] == {CREATE_ONLY_ANNOTATION: "true"}

    graph_builder = bundle.container(ContainerRole.GRAPH_BUILDER)
    assert {"name": "HTTPS_PROXY", "value": "http://proxy.example.com:3128"} in graph_builder["env"]
    assert any(m["name"] == "cluster-trusted-ca" for m in graph_builder["volumeMounts"])


def test_pull_secret_copy_keeps_type_and_data():
    bundle = DesiredStateBuilder(OPERAND_IMAGE).build(
        build_instance(), ExternalDependencies(pull_secret=pull_secret())
    )

    body = bundle.pull_secret.body
    assert body["type"] == "kubernetes.io/dockerconfigjson"
    assert body["data"] == {".dockerconfigjson": "e30="}
    assert body["metadata"]["namespace"] == "openshift-update-service"


@pytest.mark.parametrize("replicas,expected", [(0, 0), (1, 0), (2, 1), (10, 1)])
def test_pod_disruption_budget_min_available(replicas, expected):
    bundle = DesiredStateBuilder(OPERAND_IMAGE).build(build_instance(replicas=replicas))

    assert bundle.pod_disruption_budget.body["spec"]["minAvailable"] == expected


def test_services_and_route():
    bundle = DesiredStateBuilder(OPERAND_IMAGE).build(build_instance())

    pe_ports = bundle.policy_engine_service.body["spec"]["ports"]
    assert [(p["port"], p["targetPort"]) for p in pe_ports] == [(80, 8081), (9081, 9081)]
    gb_ports = bundle.graph_builder_service.body["spec"]["ports"]
    assert [p["port"] for p in gb_ports] == [8080, 9080]
    assert bundle.policy_engine_service.body["spec"]["selector"] == {"deployment": "example"}

    route = bundle.policy_engine_route.body["spec"]
    assert route["to"] == {"kind": "Service", "name": "example-policy-engine"}
    assert route["tls"]["termination"] == "edge"


def test_malformed_releases_raise_before_rendering():
    builder = DesiredStateBuilder(OPERAND_IMAGE)

    with pytest.raises(SpecValidationError):
        builder.build(build_instance(releases="not-a-valid-path"))
    with pytest.raises(SpecValidationError):
        builder.build(build_instance(releases="quay.io/"))


def test_digest_pod():
    instance = build_instance()
    refreshed = datetime(2024, 3, 5, 14, 30, tzinfo=timezone.utc)

    pod = graph_data_digest_pod(instance, refreshed)

    assert pod.name == "graph-data-tag-digest"
    assert pod.policy is MergePolicy.CREATE_ONLY
    assert pod.body["metadata"]["annotations"][LAST_REFRESH_ANNOTATION] == "05 Mar 24 14:30 UTC"
    container = pod.body["spec"]["containers"][0]
    assert container["image"] == instance.spec.graph_data_image
    assert pod.body["spec"]["restartPolicy"] == "Never"


def test_spec_from_dict_joins_legacy_fields():
    spec = UpdateServiceSpec.from_dict({"replicas": 2, "registry": "quay.io", "repository": "org/repo"})

    assert spec.releases == "quay.io/org/repo"
    assert spec.split_releases() == ("quay.io", "org/repo")
    assert spec.ca_config_map_key == "updateservice-registry"
