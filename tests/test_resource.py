"""Tests for the resource library."""

import io
from pathlib import Path
from typing import Any

import pytest

from gke_deploy import resource
from gke_deploy.diagnostics import Diagnostics
from gke_deploy.exceptions import (
    DecodeError,
    InputException,
    ParseError,
    ValidationError,
)
from gke_deploy.resource import Object

TESTDATA_DIR = Path(__file__).parent / "testdata"


def deployment(name: str = "test-app", namespace: str | None = None) -> Object:
    """Return a Deployment object with a single container."""
    obj = resource.create_deployment_object(
        name, name, "gcr.io/my-project/my-app:1.0.0"
    )
    if namespace is not None:
        obj.namespace = namespace
    return obj


def test_decode() -> None:
    """Test decoding a single document."""
    obj = resource.decode((TESTDATA_DIR / "deployment.yaml").read_text())
    assert obj.kind == "Deployment"
    assert obj.api_version == "apps/v1"
    assert obj.name == "test-app"
    assert obj.namespace == ""
    assert str(obj) == "{kind: Deployment, name: test-app}"


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("kind: [Deployment", "Failed to decode yaml"),
        ("- kind: Deployment", "expected a map"),
        ("metadata:\n  name: test-app\n", "'kind' is missing"),
        ("kind: Pod\n---\nkind: Service\n", "Failed to decode yaml"),
    ],
    ids=["malformed", "not-a-map", "missing-kind", "multiple-documents"],
)
def test_decode_error(content: str, match: str) -> None:
    """Test documents that can't be decoded into an object."""
    with pytest.raises(DecodeError, match=match):
        resource.decode(content)


def test_encode_round_trip() -> None:
    """Test that encoding a decoded document reproduces the document."""
    content = (TESTDATA_DIR / "deployment.yaml").read_text()
    assert resource.encode(resource.decode(content)) == content


def test_encode_strips_empty_fields() -> None:
    """Test that an empty status and creation timestamp are not encoded."""
    obj = Object(
        {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": "foobar", "creationTimestamp": None},
            "spec": {},
            "status": {},
        }
    )
    assert resource.encode(obj) == (
        "apiVersion: v1\nkind: Namespace\nmetadata:\n  name: foobar\nspec: {}\n"
    )
    # The object itself is left unchanged
    assert "status" in obj.doc

    obj.doc["status"] = {"phase": "Active"}
    assert "status:\n  phase: Active\n" in resource.encode(obj)


async def test_parse_single_file() -> None:
    """Test parsing a file with a single object."""
    objs = await resource.parse_configs(TESTDATA_DIR / "deployment.yaml")
    assert list(objs) == ["deployment.yaml"]
    assert objs["deployment.yaml"].name == "test-app"


async def test_parse_multiple_documents() -> None:
    """Test that later objects in a file get names from their kind and name."""
    objs = await resource.parse_configs(str(TESTDATA_DIR / "multi-resource.yaml"))
    assert list(objs) == [
        "multi-resource.yaml",
        "multi-resource-service-test-app-service.yaml",
    ]
    assert objs["multi-resource.yaml"].kind == "Deployment"
    assert objs["multi-resource-service-test-app-service.yaml"].kind == "Service"


async def test_parse_directory() -> None:
    """Test parsing a directory only reads yaml files."""
    objs = await resource.parse_configs(TESTDATA_DIR / "configs")
    assert sorted(objs) == ["deployment.yaml", "service.yml"]


async def test_parse_directory_recursive() -> None:
    """Test parsing a directory and its subdirectories."""
    objs = await resource.parse_configs(TESTDATA_DIR / "configs", recursive=True)
    assert sorted(objs) == ["configmap.yaml", "deployment.yaml", "service.yml"]


async def test_parse_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test parsing objects piped to stdin."""
    content = (TESTDATA_DIR / "multi-resource.yaml").read_text()
    monkeypatch.setattr("sys.stdin", io.StringIO(content))
    objs = await resource.parse_configs("-")
    assert list(objs) == ["k8s.yaml", "k8s-service-test-app-service.yaml"]


@pytest.mark.parametrize(
    ("path", "recursive", "match"),
    [
        ("no-configs", False, "has no"),
        ("does-not-exist", False, "no such file"),
        ("deployment.yaml", True, "Cannot recur through a file"),
        ("configs/README.md", False, "does not end in"),
        ("-", True, "Cannot recur with stdin"),
    ],
)
async def test_parse_error(path: str, recursive: bool, match: str) -> None:
    """Test configuration paths that can't be parsed."""
    config = path if path == "-" else str(TESTDATA_DIR / path)
    with pytest.raises(ParseError, match=match):
        await resource.parse_configs(config, recursive)


async def test_parse_decode_error(tmp_path: Path) -> None:
    """Test that the failing document is identified."""
    config = tmp_path / "bad.yaml"
    config.write_text("kind: Pod\nmetadata:\n  name: a\n---\nmetadata: {}\n")
    with pytest.raises(DecodeError, match="item 2 in file"):
        await resource.parse_configs(config)


async def test_save_as_configs(tmp_path: Path) -> None:
    """Test saving objects as one file per object."""
    objs = await resource.parse_configs(TESTDATA_DIR / "multi-resource.yaml")
    output = tmp_path / "output" / "expanded"
    await resource.save_as_configs(objs, output)

    assert sorted(p.name for p in output.iterdir()) == sorted(objs)
    reparsed = await resource.parse_configs(output)
    assert reparsed == objs

    with pytest.raises(InputException, match="is not empty"):
        await resource.save_as_configs(objs, output)
    with pytest.raises(InputException, match="exists as a file"):
        await resource.save_as_configs(objs, output / "multi-resource.yaml")


async def test_save_as_configs_line_comments(tmp_path: Path) -> None:
    """Test adding comments to lines containing a string."""
    objs = {"deployment.yaml": deployment()}
    await resource.save_as_configs(
        objs, tmp_path, {"image: gcr.io/my-project/my-app": "Set before deploying"}
    )
    content = (tmp_path / "deployment.yaml").read_text()
    assert (
        "  image: gcr.io/my-project/my-app:1.0.0  # Set before deploying\n"
        in content
    )
    assert content.count("#") == 1


def test_add_comments_to_lines_newline() -> None:
    """Test that comments can't span lines."""
    with pytest.raises(InputException, match="newline"):
        resource.add_comments_to_lines("a: b\n", {"a": "one\ntwo"})


def test_add_object_names() -> None:
    """Test default names of added objects and collision resolution."""
    objs: resource.Objects = {}
    assert resource.add_object(objs, deployment()) == "deployment.yaml"
    assert resource.add_object(objs, deployment()) == "deployment-test-app.yaml"
    assert resource.add_object(objs, deployment()) == "deployment-test-app-2.yaml"
    assert resource.add_object(objs, deployment()) == "deployment-test-app-3.yaml"
    assert (
        resource.add_object(objs, resource.create_hpa_object("test-app-hpa", "test-app"))
        == "horizontalpodautoscaler.yaml"
    )


def test_unique_name() -> None:
    """Test the suffix is inserted before the file extension."""
    objs = {"app.yaml": deployment(), "app-2.yaml": deployment()}
    assert resource.unique_name(objs, "app.yaml") == "app-3.yaml"
    assert resource.unique_name(objs, "other.yml") == "other.yml"


def test_has_object_and_duplicates() -> None:
    """Test looking up objects by kind and name."""
    objs = {"a.yaml": deployment(), "b.yaml": deployment(), "c.yaml": deployment("other")}
    assert resource.has_object(objs, "Deployment", "other")
    assert not resource.has_object(objs, "Service", "other")
    assert resource.find_duplicates(objs) == ["{kind: Deployment, name: test-app}"]


def test_add_label() -> None:
    """Test labels are added to the object and its pod template."""
    obj = deployment()
    resource.add_label(obj, "team", "web")
    assert obj.labels == {"team": "web"}
    assert obj.doc["spec"]["template"]["metadata"]["labels"] == {
        "app": "test-app",
        "team": "web",
    }


def test_add_label_cron_job() -> None:
    """Test the pod template of a CronJob is nested under its job template."""
    obj = Object(
        {
            "apiVersion": "batch/v1",
            "kind": "CronJob",
            "metadata": {"name": "test-cron-job"},
            "spec": {"jobTemplate": {"spec": {"template": {"spec": {}}}}},
        }
    )
    resource.add_label(obj, "team", "web")
    template = obj.doc["spec"]["jobTemplate"]["spec"]["template"]
    assert template["metadata"]["labels"] == {"team": "web"}
    assert "template" not in obj.doc["spec"]


def test_add_label_no_override() -> None:
    """Test an existing label is kept with a warning when it differs."""
    obj = deployment()
    diagnostics = Diagnostics()
    resource.add_label(obj, "app", "test-app", diagnostics=diagnostics)
    assert not diagnostics

    resource.add_label(obj, "app", "changed", diagnostics=diagnostics)
    assert obj.doc["spec"]["template"]["metadata"]["labels"]["app"] == "test-app"
    # Once for the object labels and once for the pod template labels
    assert len(diagnostics) == 2
    assert "Not overriding" in diagnostics.messages[0]

    resource.add_label(obj, "app", "changed", override=True, diagnostics=diagnostics)
    assert obj.doc["spec"]["template"]["metadata"]["labels"]["app"] == "changed"


def test_add_label_empty() -> None:
    """Test labels need a key and value."""
    with pytest.raises(ValidationError, match="cannot be empty"):
        resource.add_label(deployment(), "", "value")


def test_add_annotation() -> None:
    """Test annotations always override existing values."""
    obj = deployment()
    resource.add_annotation(obj, "owner", "alice")
    resource.add_annotation(obj, "owner", "bob")
    assert obj.doc["metadata"]["annotations"] == {"owner": "bob"}
    assert obj.doc["spec"]["template"]["metadata"]["annotations"] == {"owner": "bob"}


def test_update_namespace() -> None:
    """Test only namespaces that are already set are replaced."""
    objs = {
        "a.yaml": deployment("a", namespace="other"),
        "b.yaml": deployment("b"),
        "ns.yaml": resource.create_namespace_object("other"),
    }
    diagnostics = Diagnostics()
    resource.update_namespace(objs, "prod", diagnostics)
    assert objs["a.yaml"].namespace == "prod"
    assert objs["b.yaml"].namespace == ""
    assert objs["ns.yaml"].namespace == ""
    assert len(diagnostics) == 1
    assert "'other'" in diagnostics.messages[0]


def test_update_namespace_unchanged() -> None:
    """Test replacing a namespace with the same value does nothing."""
    obj = deployment(namespace="prod")
    before = obj.copy()
    diagnostics = Diagnostics()
    resource.update_namespace({"a.yaml": obj}, "prod", diagnostics)
    assert obj == before
    assert not diagnostics


def test_add_namespace_if_missing() -> None:
    """Test the namespace is only set on objects without one."""
    objs = {
        "a.yaml": deployment("a", namespace="other"),
        "b.yaml": deployment("b"),
        "ns.yaml": resource.create_namespace_object("other"),
    }
    resource.add_namespace_if_missing(objs, "default")
    assert objs["a.yaml"].namespace == "other"
    assert objs["b.yaml"].namespace == "default"
    assert "namespace" not in objs["ns.yaml"].doc["metadata"]


def test_update_matching_container_image() -> None:
    """Test images are matched on their name regardless of tag or digest."""
    pod = Object(
        {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": "test-pod"},
            "spec": {
                "initContainers": [
                    {"name": "init", "image": "gcr.io/my-project/my-app@sha256:" + "b" * 64}
                ],
                "containers": [
                    {"name": "app", "image": "gcr.io/my-project/my-app"},
                    {"name": "proxy", "image": "gcr.io/my-project/proxy:1.0"},
                ],
            },
        }
    )
    objs = {"deployment.yaml": deployment(), "pod.yaml": pod}
    replace = "gcr.io/my-project/my-app@sha256:" + "c" * 64
    diagnostics = Diagnostics()

    assert resource.update_matching_container_image(
        objs, "gcr.io/my-project/my-app", replace, diagnostics
    )
    containers = objs["deployment.yaml"].doc["spec"]["template"]["spec"]["containers"]
    assert containers[0]["image"] == replace
    assert pod.doc["spec"]["initContainers"][0]["image"] == replace
    assert pod.doc["spec"]["containers"][0]["image"] == replace
    assert pod.doc["spec"]["containers"][1]["image"] == "gcr.io/my-project/proxy:1.0"
    assert not diagnostics


def test_update_matching_container_image_no_match() -> None:
    """Test a warning is recorded when no container uses the image."""
    obj = deployment()
    diagnostics = Diagnostics()
    assert not resource.update_matching_container_image(
        {"deployment.yaml": obj}, "gcr.io/my-project/other", "other", diagnostics
    )
    assert len(diagnostics) == 1
    assert "gcr.io/my-project/other" in diagnostics.messages[0]


def test_create_templates() -> None:
    """Test the suggested objects created from templates."""
    obj = deployment()
    assert obj.doc["spec"]["replicas"] == 3
    assert obj.doc["spec"]["selector"] == {"matchLabels": {"app": "test-app"}}

    hpa = resource.create_hpa_object("test-app-hpa", "test-app")
    assert hpa.doc["spec"]["scaleTargetRef"]["name"] == "test-app"
    assert (hpa.doc["spec"]["minReplicas"], hpa.doc["spec"]["maxReplicas"]) == (1, 5)

    service = resource.create_service_object(
        "test-app-service", "app.kubernetes.io/name", "test-app", 8080
    )
    assert service.doc["spec"]["type"] == "LoadBalancer"
    assert service.doc["spec"]["ports"] == [
        {"protocol": "TCP", "port": 8080, "targetPort": 8080}
    ]

    with pytest.raises(ValidationError, match="should not be 'default'"):
        resource.create_namespace_object("default")


def service(name: str, spec: dict[str, Any], status: dict[str, Any] | None = None) -> Object:
    """Return a deployed Service object."""
    doc: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name, "namespace": "foobar"},
        "spec": spec,
    }
    if status is not None:
        doc["status"] = status
    return Object(doc)


def test_deploy_summary() -> None:
    """Test the summary table of deployed objects."""
    ready_deployment = deployment(namespace="foobar")
    ready_deployment.doc["metadata"]["generation"] = 1
    ready_deployment.doc["status"] = {
        "observedGeneration": 1,
        "replicas": 3,
        "readyReplicas": 3,
        "availableReplicas": 3,
        "conditions": [{"type": "Available", "status": "True"}],
    }
    broken_deployment = deployment("bad", namespace="foobar")
    broken_deployment.doc["metadata"]["generation"] = 1
    broken_deployment.doc["status"] = {
        "observedGeneration": 1,
        "replicas": 3,
        "readyReplicas": 3,
        "availableReplicas": 3,
        "conditions": "broken",
    }
    pod = Object({"apiVersion": "v1", "kind": "Pod", "metadata": {"name": "test-pod"}})
    load_balancer = service(
        "test-app-service",
        {"type": "LoadBalancer", "clusterIP": "10.0.0.1", "ports": [{"port": 80}]},
        {"loadBalancer": {"ingress": [{"ip": "34.74.85.152"}]}},
    )
    objs = {
        "a.yaml": load_balancer,
        "b.yaml": pod,
        "c.yaml": ready_deployment,
        "d.yaml": broken_deployment,
    }

    row = "{:13}{:14}{:20}{:11}"
    assert resource.deploy_summary(objs) == "".join(
        [
            row.format("NAMESPACE", "KIND", "NAME", "READY") + "\n",
            row.format("foobar", "Deployment", "bad", "Unknown") + "\n",
            row.format("foobar", "Deployment", "test-app", "Yes") + "\n",
            row.format("default", "Pod", "test-pod", "No") + "\n",
            row.format("foobar", "Service", "test-app-service", "Yes")
            + "34.74.85.152\n",
        ]
    )


@pytest.mark.parametrize(
    ("obj", "expected"),
    [
        (
            service(
                "lb",
                {"type": "LoadBalancer", "ports": [{"port": 8080}]},
                {"loadBalancer": {"ingress": [{"ip": "1.2.3.4"}, {"ip": "5.6.7.8"}]}},
            ),
            "1.2.3.4:8080, 5.6.7.8:8080",
        ),
        (
            service("ext", {"type": "ExternalName", "externalName": "example.com"}),
            "example.com",
        ),
        (service("internal", {"type": "ClusterIP"}), ""),
    ],
    ids=["load-balancer-port", "external-name", "cluster-ip"],
)
def test_deploy_summary_service_info(obj: Object, expected: str) -> None:
    """Test the extra information shown for services."""
    lines = resource.deploy_summary({"svc.yaml": obj}).splitlines()
    assert lines[1].endswith(expected)
    assert lines[1].startswith("foobar")


def test_deploy_summary_service_missing_type() -> None:
    """Test a Service without a type can't be summarized."""
    with pytest.raises(InputException, match="spec.type"):
        resource.deploy_summary({"svc.yaml": service("svc", {})})

