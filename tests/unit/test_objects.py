"""Unit tests for desired object reading and normalization."""

import io

import pytest
from kubernetes.client.models import (
    V1ConfigMap,
    V1Container,
    V1ContainerPort,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
)

from kte.core.exceptions import ConfigurationError
from kte.reconcile.objects import (
    check_unique,
    flatten,
    normalize,
    normalize_object,
    read_objects,
    to_unstructured,
)


def _config_map(name: str, namespace: str | None = "default") -> dict:
    metadata = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": "v1", "kind": "ConfigMap", "metadata": metadata, "data": {"k": "v"}}


class TestReadObjects:
    """Tests for read_objects."""

    def test_multi_document_stream(self) -> None:
        stream = io.BytesIO(
            b"apiVersion: v1\nkind: Namespace\nmetadata:\n  name: a\n"
            b"---\n"
            b"---\n"
            b"apiVersion: v1\nkind: ConfigMap\nmetadata:\n  name: b\n"
        )

        objects = read_objects(stream)

        assert [obj["kind"] for obj in objects] == ["Namespace", "ConfigMap"]

    def test_accepts_text_and_json(self) -> None:
        objects = read_objects('{"apiVersion": "v1", "kind": "Secret", "metadata": {"name": "s"}}')

        assert objects[0]["kind"] == "Secret"

    def test_invalid_yaml(self) -> None:
        with pytest.raises(ConfigurationError, match="Failed to parse manifest"):
            read_objects("kind: [unclosed")

    def test_non_mapping_document(self) -> None:
        with pytest.raises(ConfigurationError, match="document 1 is a list"):
            read_objects("kind: ConfigMap\n---\n- a\n- b\n")


class TestToUnstructured:
    """Tests for to_unstructured."""

    def test_dict_is_deep_copied(self) -> None:
        original = _config_map("a")

        converted = to_unstructured(original)
        original["data"]["k"] = "changed"

        assert converted["data"] == {"k": "v"}

    def test_typed_model_infers_type_metadata(self) -> None:
        """Test typed models without apiVersion/kind get them from the class."""
        deployment = V1Deployment(
            metadata=V1ObjectMeta(name="web"),
            spec=V1DeploymentSpec(
                selector=V1LabelSelector(match_labels={"app": "web"}),
                template=V1PodTemplateSpec(
                    metadata=V1ObjectMeta(labels={"app": "web"}),
                    spec=V1PodSpec(containers=[V1Container(name="app", image="nginx")]),
                ),
            ),
        )

        converted = to_unstructured(deployment)

        assert converted["apiVersion"] == "apps/v1"
        assert converted["kind"] == "Deployment"
        assert converted["spec"]["selector"] == {"matchLabels": {"app": "web"}}

    def test_typed_core_model(self) -> None:
        converted = to_unstructured(V1ConfigMap(metadata=V1ObjectMeta(name="c"), data={"a": "b"}))

        assert converted["apiVersion"] == "v1"
        assert converted["kind"] == "ConfigMap"

    def test_resource_instance_like(self) -> None:
        """Test objects exposing to_dict (dynamic ResourceInstance) are copied."""

        class Instance:
            def __init__(self, data):
                self.data = data

            def to_dict(self):
                return self.data

        data = _config_map("a")
        converted = to_unstructured(Instance(data))
        data["metadata"]["name"] = "changed"

        assert converted["metadata"]["name"] == "a"

    def test_unsupported(self) -> None:
        with pytest.raises(ConfigurationError, match="Unsupported object type: int"):
            to_unstructured(42)


class TestFlatten:
    """Tests for flatten."""

    def test_expands_lists(self) -> None:
        objects = flatten(
            [
                {"apiVersion": "v1", "kind": "ConfigMapList", "items": [_config_map("a"), _config_map("b")]},
                _config_map("c"),
            ]
        )

        assert [obj["metadata"]["name"] for obj in objects] == ["a", "b", "c"]

    def test_members_inherit_type_metadata(self) -> None:
        objects = flatten([{"apiVersion": "v1", "kind": "ConfigMapList", "items": [{"metadata": {"name": "a"}}]}])

        assert objects[0]["apiVersion"] == "v1"
        assert objects[0]["kind"] == "ConfigMap"

    def test_nested_list_rejected(self) -> None:
        nested = {"apiVersion": "v1", "kind": "List", "items": [{"apiVersion": "v1", "kind": "List", "items": []}]}

        with pytest.raises(ConfigurationError, match="Nested list"):
            flatten([nested])


class TestNormalizeObject:
    """Tests for normalize_object."""

    def test_strips_status_and_server_metadata(self) -> None:
        obj = _config_map("a")
        obj["status"] = {"phase": "x"}
        obj["metadata"].update(
            {"resourceVersion": "12", "uid": "u", "managedFields": [], "creationTimestamp": "t", "generation": 3}
        )

        normalize_object(obj)

        assert "status" not in obj
        assert obj["metadata"] == {"name": "a", "namespace": "default"}

    def test_drops_empty_namespace(self) -> None:
        obj = _config_map("a", namespace=None)
        obj["metadata"]["namespace"] = ""

        assert "namespace" not in normalize_object(obj)["metadata"]

    def test_requires_name(self) -> None:
        obj = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"generateName": "x-"}}

        with pytest.raises(ConfigurationError, match="generateName is not supported"):
            normalize_object(obj)

    def test_requires_type_metadata(self) -> None:
        with pytest.raises(ConfigurationError, match="missing apiVersion or kind"):
            normalize_object({"metadata": {"name": "a"}})

    def test_defaults_service_port_protocol(self) -> None:
        obj = {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "svc"},
            "spec": {"ports": [{"port": 80}, {"port": 53, "protocol": "UDP"}]},
        }

        normalize_object(obj)

        assert [p["protocol"] for p in obj["spec"]["ports"]] == ["TCP", "UDP"]

    def test_defaults_container_port_protocol(self) -> None:
        deployment = to_unstructured(
            V1Deployment(
                metadata=V1ObjectMeta(name="web"),
                spec=V1DeploymentSpec(
                    selector=V1LabelSelector(match_labels={"app": "web"}),
                    template=V1PodTemplateSpec(
                        spec=V1PodSpec(
                            containers=[
                                V1Container(name="app", ports=[V1ContainerPort(container_port=8080)])
                            ]
                        )
                    ),
                ),
            )
        )

        normalize_object(deployment)

        port = deployment["spec"]["template"]["spec"]["containers"][0]["ports"][0]
        assert port == {"containerPort": 8080, "protocol": "TCP"}


class TestNormalize:
    """Tests for normalize and check_unique."""

    def test_duplicates_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="Duplicate objects in desired set: ConfigMap/default/a"):
            normalize([_config_map("a"), _config_map("a")])

    def test_same_name_different_namespace_is_fine(self) -> None:
        check_unique([_config_map("a", "x"), _config_map("a", "y")])

    def test_same_identity_different_version_rejected(self) -> None:
        first = {"apiVersion": "example.com/v1", "kind": "Widget", "metadata": {"name": "w"}}
        second = {"apiVersion": "example.com/v2", "kind": "Widget", "metadata": {"name": "w"}}

        with pytest.raises(ConfigurationError, match="Duplicate"):
            check_unique([first, second])

    def test_does_not_mutate_input(self) -> None:
        original = _config_map("a")
        original["status"] = {"x": 1}

        normalize([original])

        assert original["status"] == {"x": 1}
