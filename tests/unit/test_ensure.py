import copy
import dataclasses

import pytest

from updateservice.builder import DesiredStateBuilder
from updateservice.config import ExternalDependencies, ProxySettings, UpdateService, UpdateServiceSpec
from updateservice.ensure import ConvergenceEngine, EnsureResult, ingress_uri
from updateservice.errors import AlreadyExistsError, InvariantViolation, ReconcileStepError, StoreError
from updateservice.names import ENV_CONFIG_HASH_ANNOTATION, GRAPH_BUILDER_CONFIG_HASH_ANNOTATION, GRAPH_DATA_IMAGE_ANNOTATION
from updateservice.store import InMemoryObjectStore

NAMESPACE = "openshift-update-service"


def build_instance(**spec) -> UpdateService:
    values = {
        "replicas": 2,
        "releases": "quay.io/openshift-release-dev/ocp-release",
        "graph_data_image": "quay.io/example/graph-data:latest",
    }
    values.update(spec)
    return UpdateService(name="example", namespace=NAMESPACE, uid="1234", spec=UpdateServiceSpec(**values))


def build_bundle(instance=None, dependencies=None):
    return DesiredStateBuilder("quay.io/cincinnati/cincinnati:latest").build(
        instance or build_instance(), dependencies
    )


def build_engine(store, **kwargs):
    sleeps = []
    kwargs.setdefault("sleep", sleeps.append)
    engine = ConvergenceEngine(store, retry_delay=0.5, **kwargs)
    return engine, sleeps


def test_ensure_creates_then_is_idempotent():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    config = build_bundle().graph_builder_config

    assert engine.ensure(config) is EnsureResult.CREATED
    assert engine.ensure(config) is EnsureResult.UNCHANGED

    assert store.writes() == [("create", "ConfigMap", NAMESPACE, "example-config")]
    live = store.get("ConfigMap", NAMESPACE, "example-config")
    assert live["metadata"]["ownerReferences"][0]["uid"] == "1234"
    assert live["metadata"]["ownerReferences"][0]["controller"] is True


def test_every_descriptor_converges_in_one_write():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    bundle = build_bundle()

    for descriptor in bundle.descriptors():
        engine.ensure(descriptor)
    first = len(store.writes())
    for descriptor in bundle.descriptors():
        assert engine.ensure(descriptor) is EnsureResult.UNCHANGED

    assert first == len(bundle.descriptors())
    assert len(store.writes()) == first


def test_config_map_update_preserves_foreign_metadata():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    env_config = build_bundle().env_config
    engine.ensure(env_config)

    live = store.get("ConfigMap", NAMESPACE, "example-env")
    live["metadata"]["labels"] = {"team": "updates"}
    live["data"]["pe.log.verbosity"] = "vvvv"
    store.put(live)

    assert engine.ensure(env_config) is EnsureResult.UPDATED

    live = store.get("ConfigMap", NAMESPACE, "example-env")
    assert live["data"]["pe.log.verbosity"] == "vv"
    assert live["metadata"]["labels"] == {"team": "updates"}


def test_owner_reference_added_on_update():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    env_config = build_bundle().env_config
    store.put(copy.deepcopy(env_config.body))

    assert engine.ensure(env_config) is EnsureResult.UPDATED
    live = store.get("ConfigMap", NAMESPACE, "example-env")
    assert [ref["uid"] for ref in live["metadata"]["ownerReferences"]] == ["1234"]


def test_service_cluster_ip_is_preserved():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    service = build_bundle().policy_engine_service
    engine.ensure(service)
    assigned = store.get("Service", NAMESPACE, "example-policy-engine")["spec"]["clusterIP"]

    live = store.get("Service", NAMESPACE, "example-policy-engine")
    live["spec"]["ports"] = [{"name": "policy-engine", "port": 8000, "targetPort": 8081, "protocol": "TCP"}]
    store.put(live)

    assert engine.ensure(service) is EnsureResult.UPDATED
    live = store.get("Service", NAMESPACE, "example-policy-engine")
    assert live["spec"]["clusterIP"] == assigned
    assert live["spec"]["ports"] == service.body["spec"]["ports"]


def test_create_race_retries_once_after_delay():
    store = InMemoryObjectStore()
    config = build_bundle().graph_builder_config
    sleeps = []

    def concurrent_create(delay):
        sleeps.append(delay)
        store.put(config.render())

    engine = ConvergenceEngine(store, retry_delay=0.5, sleep=concurrent_create)
    store.inject_fault("create", "ConfigMap", AlreadyExistsError("ConfigMap", NAMESPACE, "example-config"))

    assert engine.ensure(config) is EnsureResult.UNCHANGED
    assert sleeps == [0.5]


def test_second_create_race_propagates():
    store = InMemoryObjectStore()
    engine, sleeps = build_engine(store)
    error = AlreadyExistsError("ConfigMap", NAMESPACE, "example-config")
    store.inject_fault("create", "ConfigMap", error, times=2)

    with pytest.raises(AlreadyExistsError):
        engine.ensure(build_bundle().graph_builder_config)
    assert sleeps == [0.5]


def test_other_get_errors_propagate():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    store.inject_fault("get", "ConfigMap", StoreError("connection refused"))

    with pytest.raises(StoreError):
        engine.ensure(build_bundle().graph_builder_config)
    assert store.writes() == []


def test_route_tls_is_preserved():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    route = build_bundle().policy_engine_route
    engine.ensure(route)

    live = store.get("Route", NAMESPACE, "example-route")
    custom_tls = {"termination": "reencrypt", "certificate": "cert", "key": "key"}
    live["spec"]["tls"] = custom_tls
    live["spec"]["to"]["name"] = "somewhere-else"
    store.put(live)

    assert engine.ensure(route) is EnsureResult.UPDATED
    live = store.get("Route", NAMESPACE, "example-route")
    assert live["spec"]["tls"] == custom_tls
    assert live["spec"]["to"]["name"] == "example-policy-engine"


def test_route_without_tls_stays_without_tls():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    route = build_bundle().policy_engine_route
    engine.ensure(route)
    live = store.get("Route", NAMESPACE, "example-route")
    del live["spec"]["tls"]
    store.put(live)

    assert engine.ensure(route) is EnsureResult.UNCHANGED


def test_ensure_route_prefers_legacy_route():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    bundle = build_bundle()
    store.put(bundle.legacy_policy_engine_route.render())

    result, live = engine.ensure_route(bundle.policy_engine_route, bundle.legacy_policy_engine_route)

    assert result is EnsureResult.UNCHANGED
    assert live["metadata"]["name"] == "example-policy-engine-route"
    assert store.writes("Route") == []


def test_ensure_route_creates_current_name_without_legacy():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    bundle = build_bundle()

    result, live = engine.ensure_route(bundle.policy_engine_route, bundle.legacy_policy_engine_route)

    assert result is EnsureResult.CREATED
    assert live["metadata"]["name"] == "example-route"


def test_create_only_is_never_updated():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    proxy = ProxySettings(http_proxy="http://proxy:3128")
    bundle = build_bundle(dependencies=ExternalDependencies(proxy=proxy))
    engine.ensure(bundle.cluster_ca_config)

    live = store.get("ConfigMap", NAMESPACE, "cluster-trusted-ca")
    live["data"] = {"ca-bundle.crt": "injected"}
    live["metadata"]["ownerReferences"] = []
    store.put(live)

    assert engine.ensure(bundle.cluster_ca_config) is EnsureResult.UNCHANGED
    assert store.get("ConfigMap", NAMESPACE, "cluster-trusted-ca")["data"] == {"ca-bundle.crt": "injected"}


def test_config_change_rolls_the_deployment():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    before = build_bundle()
    engine.ensure(before.deployment)

    after = build_bundle(build_instance(releases="registry.example.com/mirror/release"))
    assert engine.ensure(after.deployment) is EnsureResult.UPDATED

    live = store.get("Deployment", NAMESPACE, "example")
    template = live["spec"]["template"]
    assert template["metadata"]["annotations"][GRAPH_BUILDER_CONFIG_HASH_ANNOTATION] == after.graph_builder_config_hash
    assert template["metadata"]["annotations"][ENV_CONFIG_HASH_ANNOTATION] == before.env_config_hash
    assert template["spec"]["containers"] == before.deployment.body["spec"]["template"]["spec"]["containers"]


def test_deployment_merge_keeps_foreign_state():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    deployment = build_bundle().deployment
    engine.ensure(deployment)

    live = store.get("Deployment", NAMESPACE, "example")
    template = live["spec"]["template"]
    template["metadata"]["annotations"]["kubectl.kubernetes.io/restartedAt"] = "2024-01-01T00:00:00Z"
    template["spec"]["containers"].append({"name": "sidecar", "image": "proxy:1"})
    template["spec"]["containers"][0]["resources"]["limits"]["ephemeral-storage"] = "1Gi"
    template["spec"]["containers"][0]["terminationMessagePath"] = "/dev/termination-log"
    store.put(live)

    assert engine.ensure(deployment) is EnsureResult.UNCHANGED


def test_deployment_merge_restores_owned_container_fields():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    deployment = build_bundle().deployment
    engine.ensure(deployment)

    live = store.get("Deployment", NAMESPACE, "example")
    live["spec"]["replicas"] = 7
    container = live["spec"]["template"]["spec"]["containers"][1]
    container["image"] = "example.com/other:1"
    container["resources"]["requests"]["cpu"] = "1"
    del container["readinessProbe"]
    store.put(live)

    assert engine.ensure(deployment) is EnsureResult.UPDATED

    live = store.get("Deployment", NAMESPACE, "example")
    assert live["spec"]["replicas"] == 2
    restored = live["spec"]["template"]["spec"]["containers"][1]
    desired = deployment.body["spec"]["template"]["spec"]["containers"][1]
    assert restored == desired


def test_unknown_containers_pruned_when_requested():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store, prune_unknown_containers=True)
    deployment = build_bundle().deployment
    engine.ensure(deployment)

    live = store.get("Deployment", NAMESPACE, "example")
    live["spec"]["template"]["spec"]["containers"].append({"name": "sidecar", "image": "proxy:1"})
    store.put(live)

    assert engine.ensure(deployment) is EnsureResult.UPDATED
    live = store.get("Deployment", NAMESPACE, "example")
    names = [c["name"] for c in live["spec"]["template"]["spec"]["containers"]]
    assert names == ["graph-builder", "policy-engine"]


def test_unknown_init_containers_are_pruned():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    deployment = build_bundle().deployment
    engine.ensure(deployment)

    live = store.get("Deployment", NAMESPACE, "example")
    live["spec"]["template"]["spec"]["initContainers"].append({"name": "debug", "image": "busybox"})
    store.put(live)

    assert engine.ensure(deployment) is EnsureResult.UPDATED
    live = store.get("Deployment", NAMESPACE, "example")
    assert [c["name"] for c in live["spec"]["template"]["spec"]["initContainers"]] == ["graph-data"]


def test_missing_init_container_is_restored():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    deployment = build_bundle().deployment
    engine.ensure(deployment)

    live = store.get("Deployment", NAMESPACE, "example")
    del live["spec"]["template"]["spec"]["initContainers"]
    store.put(live)

    assert engine.ensure(deployment) is EnsureResult.UPDATED
    live = store.get("Deployment", NAMESPACE, "example")
    restored = live["spec"]["template"]["spec"]["initContainers"]
    assert restored == deployment.body["spec"]["template"]["spec"]["initContainers"]


def test_unrecognised_init_container_is_an_invariant_violation():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    deployment = build_bundle().deployment
    engine.ensure(deployment)

    body = copy.deepcopy(deployment.body)
    body["spec"]["template"]["spec"]["initContainers"].append({"name": "migrate", "image": "busybox"})

    with pytest.raises(InvariantViolation):
        engine.ensure(dataclasses.replace(deployment, body=body))
    assert store.writes("Deployment") == [("create", "Deployment", NAMESPACE, "example")]


def test_ensure_deployment_pins_graph_data_digest():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    deployment = build_bundle().deployment
    engine.ensure_deployment(deployment)

    assert engine.ensure_deployment(deployment, "quay.io/example/graph-data@sha256:abc") is EnsureResult.UPDATED
    live = store.get("Deployment", NAMESPACE, "example")
    annotations = live["spec"]["template"]["metadata"]["annotations"]
    assert annotations[GRAPH_DATA_IMAGE_ANNOTATION] == "quay.io/example/graph-data@sha256:abc"
    assert GRAPH_DATA_IMAGE_ANNOTATION not in deployment.body["spec"]["template"]["metadata"]["annotations"]


def test_graph_data_digest_skipped_for_pinned_image():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    instance = build_instance(graph_data_image="quay.io/example/graph-data@sha256:abc")

    assert engine.ensure_graph_data_digest(instance) == ""
    assert store.actions == []


def test_graph_data_digest_lifecycle():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    instance = build_instance()

    assert engine.ensure_graph_data_digest(instance) == ""
    assert store.writes("Pod") == [("create", "Pod", NAMESPACE, "graph-data-tag-digest")]

    pod = store.get("Pod", NAMESPACE, "graph-data-tag-digest")
    pod["status"] = {"phase": "Running", "containerStatuses": [{"imageID": "quay.io/example/graph-data@sha256:f00"}]}
    store.put(pod)
    assert engine.ensure_graph_data_digest(instance) == "quay.io/example/graph-data@sha256:f00"

    pod["status"]["phase"] = "Succeeded"
    store.put(pod)
    assert engine.ensure_graph_data_digest(instance) == ""
    assert store.writes("Pod")[-1] == ("delete", "Pod", NAMESPACE, "graph-data-tag-digest")


def test_graph_data_digest_failures_carry_reasons():
    store = InMemoryObjectStore()
    engine, _ = build_engine(store)
    instance = build_instance()

    store.inject_fault("create", "Pod", StoreError("quota exceeded"))
    with pytest.raises(ReconcileStepError) as excinfo:
        engine.ensure_graph_data_digest(instance)
    assert excinfo.value.reason == "CreateGraphDataPodFailed"

    engine.ensure_graph_data_digest(instance)
    with pytest.raises(ReconcileStepError) as excinfo:
        engine.ensure_graph_data_digest(instance)
    assert excinfo.value.reason == "GraphDataPodStatusEmpty"

    store.inject_fault("get", "Pod", StoreError("timeout"))
    with pytest.raises(ReconcileStepError) as excinfo:
        engine.ensure_graph_data_digest(instance)
    assert excinfo.value.reason == "GetGraphDataPodFailed"


def test_ingress_uri():
    route = {
        "metadata": {"name": "example-route"},
        "spec": {"tls": {"termination": "edge"}},
        "status": {
            "ingress": [
                {"host": "pending.example.com", "conditions": [{"type": "Admitted", "status": "False"}]},
                {"host": "example.apps.example.com", "conditions": [{"type": "Admitted", "status": "True"}]},
            ]
        },
    }

    assert ingress_uri(route) == "https://example.apps.example.com"

    del route["spec"]["tls"]
    assert ingress_uri(route) == "http://example.apps.example.com"

    route["status"] = {}
    with pytest.raises(ValueError):
        ingress_uri(route)
