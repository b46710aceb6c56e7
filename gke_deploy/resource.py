"""Representation of the Kubernetes resource objects being deployed.

A set of resource objects is parsed from a file or a directory of `.yaml` or
`.yml` files. Each object is stored under a generated, human readable file
name that is unique within the set, so the set can be written back out as a
directory with one object per file:

```python
from gke_deploy import resource

objs = await resource.parse_configs("configs/")
for filename, obj in objs.items():
    print(f"{filename}: {obj}")
await resource.save_as_configs(objs, "output/expanded")
```

Objects are mutated in place while a deployment is prepared (labels,
annotations, namespaces and container images).
"""

import copy
import logging
import os
from pathlib import Path
import re
import sys
from typing import Any

import aiofiles
import aiofiles.os
from aiofiles.ospath import exists, isdir
from slugify import slugify
import yaml

from . import fields, image
from .diagnostics import Diagnostics, get_diagnostics
from .exceptions import (
    DecodeError,
    FieldTypeError,
    InputException,
    ParseError,
    ReadinessError,
    ValidationError,
)
from .format import format_columns

__all__ = [
    "Object",
    "Objects",
    "decode",
    "encode",
    "parse_configs",
    "save_as_configs",
    "add_object",
    "has_object",
    "add_label",
    "add_annotation",
    "update_namespace",
    "add_namespace_if_missing",
    "update_matching_container_image",
    "deploy_summary",
]

_LOGGER = logging.getLogger(__name__)

NAMESPACE_KIND = "Namespace"
SERVICE_KIND = "Service"
APPLICATION_KIND = "Application"
DEFAULT_NAMESPACE = "default"

STDIN = "-"
STDIN_FILENAME = "k8s.yaml"
YAML_SUFFIXES = (".yaml", ".yml")

# Upper bound on `-N` suffixes tried when resolving a file name collision.
MAX_NAME_ATTEMPTS = 1000

# Documents in a multi-document file are separated by a line starting with `---`
_DOCUMENT_SEPARATOR = re.compile(r"^---.*$", re.MULTILINE)

# Location of the pod template for each workload kind.
POD_TEMPLATE_PATHS: dict[str, tuple[str, ...]] = {
    "CronJob": ("spec", "jobTemplate", "spec", "template"),
    "DaemonSet": ("spec", "template"),
    "Deployment": ("spec", "template"),
    "Job": ("spec", "template"),
    "ReplicaSet": ("spec", "template"),
    "ReplicationController": ("spec", "template"),
    "StatefulSet": ("spec", "template"),
}

# Location of the pod spec holding containers for each kind.
POD_SPEC_PATHS: dict[str, tuple[str, ...]] = {
    "Pod": ("spec",),
    **{kind: path + ("spec",) for kind, path in POD_TEMPLATE_PATHS.items()},
}

CONTAINER_KEYS = ("initContainers", "containers")

SUMMARY_HEADERS = ["NAMESPACE", "KIND", "NAME", "READY"]


class _Dumper(yaml.SafeDumper):
    """Dumper that writes multi-line strings as literal blocks."""


def _str_presenter(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    """Represent multi-line yaml strings as you'd expect.

    See https://github.com/yaml/pyyaml/issues/240
    """
    return dumper.represent_scalar(
        "tag:yaml.org,2002:str", data, style="|" if data.count("\n") > 0 else None
    )


_Dumper.add_representer(str, _str_presenter)


class Object:
    """A single Kubernetes resource object backed by its decoded document."""

    def __init__(self, doc: dict[str, Any]) -> None:
        """Initialize Object."""
        self.doc = doc

    @property
    def kind(self) -> str:
        """The kind of the object."""
        value, _ = fields.nested_str(self.doc, "kind")
        return value

    @property
    def api_version(self) -> str:
        """The apiVersion of the object."""
        value, _ = fields.nested_str(self.doc, "apiVersion")
        return value

    @property
    def name(self) -> str:
        """The name of the object."""
        value, _ = fields.nested_str(self.doc, "metadata", "name")
        return value

    @property
    def namespace(self) -> str:
        """The namespace of the object, or an empty string if unset."""
        value, _ = fields.nested_str(self.doc, "metadata", "namespace")
        return value

    @namespace.setter
    def namespace(self, value: str) -> None:
        fields.set_nested_field(self.doc, value, "metadata", "namespace")

    @property
    def labels(self) -> dict[str, Any]:
        """The labels of the object."""
        value, _ = fields.nested_map(self.doc, "metadata", "labels")
        return value

    def copy(self) -> "Object":
        """Return a deep copy of the object."""
        return Object(copy.deepcopy(self.doc))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Object):
            return NotImplemented
        return self.doc == other.doc

    def __str__(self) -> str:
        return f"{{kind: {self.kind}, name: {self.name or 'UNKNOWN'}}}"

    def __repr__(self) -> str:
        return f"Object({self})"


Objects = dict[str, Object]
"""Maps unique file names to resource objects."""


def objects_str(objs: Objects) -> str:
    """Return a string representation of objects sorted by kind and name."""
    return "[" + " ".join(str(obj) for obj in sort_objects(objs.values())) + "]"


def sort_objects(objs: Any) -> list[Object]:
    """Sort objects by kind, then name, alphabetically."""
    return sorted(objs, key=lambda obj: (obj.kind, obj.name))


def decode(data: str | bytes) -> Object:
    """Decode a single YAML document into an Object."""
    try:
        doc = yaml.safe_load(data)
    except yaml.YAMLError as err:
        raise DecodeError(f"Failed to decode yaml into object: {err}") from err
    if not isinstance(doc, dict):
        raise DecodeError(
            f"Failed to decode yaml into object: expected a map but was {type(doc).__name__}"
        )
    if not isinstance(kind := doc.get("kind"), str) or not kind:
        raise DecodeError("Failed to decode yaml into object: object 'kind' is missing")
    return Object(doc)


def encode(obj: Object) -> str:
    """Encode an object as a YAML string.

    An empty `status` or `metadata.creationTimestamp` field is not written.
    """
    doc = dict(obj.doc)
    if not doc.get("status"):
        doc.pop("status", None)
    if isinstance(metadata := doc.get("metadata"), dict) and not metadata.get(
        "creationTimestamp"
    ):
        doc["metadata"] = {k: v for k, v in metadata.items() if k != "creationTimestamp"}
    return yaml.dump(doc, Dumper=_Dumper, sort_keys=False, default_flow_style=False)


def unique_name(objs: Objects, filename: str) -> str:
    """Return `filename`, or a `-N` suffixed variant not already in `objs`."""
    if filename not in objs:
        return filename
    stem, suffix = os.path.splitext(filename)
    for i in range(2, MAX_NAME_ATTEMPTS + 2):
        candidate = f"{stem}-{i}{suffix}"
        if candidate not in objs:
            return candidate
    raise InputException(
        f"Unable to find a unique file name for {filename!r} after {MAX_NAME_ATTEMPTS} attempts"
    )


def _name_stem(*parts: str) -> str:
    return slugify("-".join(parts))


def add_object(objs: Objects, obj: Object) -> str:
    """Add an object using a name derived from its kind, returning the name."""
    kind = _name_stem(obj.kind)
    for candidate in (f"{kind}.yaml", f"{_name_stem(kind, obj.name)}.yaml"):
        if candidate not in objs:
            objs[candidate] = obj
            return candidate
    filename = unique_name(objs, f"{_name_stem(kind, obj.name)}.yaml")
    objs[filename] = obj
    return filename


def has_object(objs: Objects, kind: str, name: str) -> bool:
    """Return True if there is an object matching the kind and name."""
    return any(obj.kind == kind and obj.name == name for obj in objs.values())


def find_duplicates(objs: Objects) -> list[str]:
    """Return objects sharing the same kind and name with another object."""
    seen: set[tuple[str, str]] = set()
    dups: list[str] = []
    for obj in objs.values():
        key = (obj.kind, obj.name)
        if key in seen:
            dups.append(str(obj))
        seen.add(key)
    return dups


def _is_blank(chunk: str) -> bool:
    """Return True if the chunk only contains comments and whitespace."""
    for line in chunk.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            return False
    return True


def _parse_content(objs: Objects, filename: str, content: str, label: str) -> None:
    """Decode every document in `content`, adding them to `objs`."""
    stem, suffix = os.path.splitext(filename)
    count = 0
    for i, chunk in enumerate(_DOCUMENT_SEPARATOR.split(content)):
        if _is_blank(chunk):
            continue
        try:
            obj = decode(chunk)
        except DecodeError as err:
            raise DecodeError(
                f"Failed to decode resource from item {i + 1} in {label}: {err}"
            ) from err
        if count == 0:
            candidate = filename
        else:
            candidate = f"{_name_stem(stem, obj.kind, obj.name)}{suffix}"
        objs[unique_name(objs, candidate)] = obj
        count += 1


def has_yaml_suffix(filename: str) -> bool:
    """Return True if the file name ends in `.yaml` or `.yml`."""
    return filename.endswith(YAML_SUFFIXES)


async def _parse_file(objs: Objects, path: Path) -> None:
    try:
        async with aiofiles.open(str(path)) as config_file:
            content = await config_file.read()
    except OSError as err:
        raise ParseError(f"Failed to read file {str(path)!r}: {err}") from err
    _parse_content(objs, path.name, content, f"file {str(path)!r}")


async def _walk(objs: Objects, path: Path, recursive: bool) -> bool:
    """Parse config files under a directory, returning True if any were found."""
    try:
        entries = sorted(await aiofiles.os.listdir(str(path)))
    except OSError as err:
        raise ParseError(
            f"Failed to list files in directory {str(path)!r}: {err}"
        ) from err
    found = False
    for entry in entries:
        subpath = path / entry
        if await isdir(subpath):
            if recursive and await _walk(objs, subpath, recursive):
                found = True
            continue
        if has_yaml_suffix(entry):
            found = True
            await _parse_file(objs, subpath)
    return found


async def parse_configs(configs: str | Path, recursive: bool = False) -> Objects:
    """Parse resource objects from a file or directory of files.

    A value of `-` reads the objects from standard input.
    """
    objs: Objects = {}
    if str(configs) == STDIN:
        if recursive:
            raise ParseError("Cannot recur with stdin")
        _parse_content(objs, STDIN_FILENAME, sys.stdin.read(), "stdin")
        return objs

    path = Path(configs)
    if not await exists(path):
        raise ParseError(f"Failed to get file info for {str(configs)!r}: no such file or directory")
    if await isdir(path):
        if not await _walk(objs, path, recursive):
            raise ParseError(
                f'Directory {str(configs)!r} has no ".yaml" or ".yml" files to parse'
            )
        return objs
    if recursive:
        raise ParseError(f"Cannot recur through a file {str(configs)!r}")
    if not has_yaml_suffix(path.name):
        raise ParseError(f'File {str(configs)!r} does not end in ".yaml" or ".yml"')
    await _parse_file(objs, path)
    return objs


def add_comments_to_lines(content: str, line_comments: dict[str, str]) -> str:
    """Append a comment to every line containing one of the keys."""
    for key, comment in line_comments.items():
        if "\n" in key:
            raise InputException("Line cannot contain a newline character")
        if "\n" in comment:
            raise InputException("Comment cannot contain a newline character")
    lines = content.split("\n")
    for i, line in enumerate(lines):
        for key, comment in line_comments.items():
            if key in line:
                lines[i] = f"{lines[i]}  # {comment}"
    return "\n".join(lines)


async def save_as_configs(
    objs: Objects,
    output_dir: str | Path,
    line_comments: dict[str, str] | None = None,
) -> None:
    """Save each object as a file in an empty or new output directory."""
    path = Path(output_dir)
    if await exists(path):
        if not await isdir(path):
            raise InputException(f"Output directory {str(output_dir)!r} exists as a file")
        if await aiofiles.os.listdir(str(path)):
            raise InputException(
                f"Output directory {str(output_dir)!r} exists and is not empty"
            )
    try:
        await aiofiles.os.makedirs(str(path), exist_ok=True)
    except OSError as err:
        raise InputException(
            f"Failed to create output directory {str(output_dir)!r}: {err}"
        ) from err

    for filename, obj in objs.items():
        content = encode(obj)
        if line_comments:
            content = add_comments_to_lines(content, line_comments)
        async with aiofiles.open(str(path / filename), mode="w") as config_file:
            await config_file.write(content)


def _add_to_nested_map(
    obj: Object,
    key: str,
    value: str,
    override: bool,
    diagnostics: Diagnostics,
    *path: str,
) -> None:
    current, _ = fields.nested_map(obj.doc, *path)
    if key in current and not override:
        if (existing := current[key]) != value:
            diagnostics.warning(
                f"Key {key!r} is already set as {existing!r} for object {obj} in "
                f"{'.'.join(path)} field. Not overriding."
            )
        return
    current[key] = value
    fields.set_nested_field(obj.doc, current, *path)


def _add_metadata_entry(
    obj: Object,
    field: str,
    key: str,
    value: str,
    override: bool,
    diagnostics: Diagnostics | None,
) -> None:
    if not key or not value:
        raise ValidationError(f"Key and value of {field[:-1]} cannot be empty")
    diag = get_diagnostics(diagnostics)
    try:
        _add_to_nested_map(obj, key, value, override, diag, "metadata", field)
        if (path := POD_TEMPLATE_PATHS.get(obj.kind)) is not None:
            _add_to_nested_map(obj, key, value, override, diag, *path, "metadata", field)
    except FieldTypeError as err:
        raise ValidationError(f"Failed to add {key}={value} to {obj}: {err}") from err


def add_label(
    obj: Object,
    key: str,
    value: str,
    override: bool = False,
    diagnostics: Diagnostics | None = None,
) -> None:
    """Add a label to the object and to the pod template of workloads."""
    _add_metadata_entry(obj, "labels", key, value, override, diagnostics)


def add_annotation(
    obj: Object,
    key: str,
    value: str,
    diagnostics: Diagnostics | None = None,
) -> None:
    """Add an annotation to the object and to the pod template of workloads."""
    _add_metadata_entry(obj, "annotations", key, value, True, diagnostics)


def update_namespace(
    objs: Objects, replace: str, diagnostics: Diagnostics | None = None
) -> None:
    """Replace the namespace of every object that already sets one.

    Objects with no namespace are left untouched since their namespace is
    decided when they are applied.
    """
    diag = get_diagnostics(diagnostics)
    for obj in objs.values():
        if obj.kind == NAMESPACE_KIND:
            continue
        if not (namespace := obj.namespace) or namespace == replace:
            continue
        diag.warning(
            f"Namespace {namespace!r} of object {obj} is replaced with {replace!r}. "
            "Setting the namespace in configuration files is discouraged."
        )
        obj.namespace = replace


def add_namespace_if_missing(objs: Objects, namespace: str) -> None:
    """Set the namespace of every object that does not have one."""
    for obj in objs.values():
        if obj.kind == NAMESPACE_KIND or obj.namespace:
            continue
        obj.namespace = namespace


def update_matching_container_image(
    objs: Objects,
    image_name: str,
    replace: str,
    diagnostics: Diagnostics | None = None,
) -> bool:
    """Replace the image of containers whose image name matches `image_name`.

    The match ignores the tag and digest of the container image. Returns True
    if at least one container was updated.
    """
    matched = False
    for obj in objs.values():
        if (spec_path := POD_SPEC_PATHS.get(obj.kind)) is None:
            continue
        for containers_key in CONTAINER_KEYS:
            try:
                containers, _ = fields.nested_list(obj.doc, *spec_path, containers_key)
            except FieldTypeError as err:
                raise InputException(
                    f"Failed to get nested containers field of {obj}: {err}"
                ) from err
            for container in containers:
                if not isinstance(container, dict):
                    raise InputException(f"Failed to convert container of {obj} to map")
                try:
                    container_image, found = fields.nested_str(container, "image")
                except FieldTypeError as err:
                    raise InputException(
                        f"Failed to get image field of {obj}: {err}"
                    ) from err
                if not found:
                    continue
                if image.image_name(container_image) != image_name:
                    continue
                _LOGGER.info("Updating container of resource: %s", obj)
                container["image"] = replace
                matched = True
    if not matched:
        get_diagnostics(diagnostics).warning(
            f"Did not find any resources with a container that has image name {image_name!r}"
        )
    return matched


def create_deployment_object(name: str, selector_value: str, image_ref: str) -> Object:
    """Create a Deployment running a single container with 3 replicas."""
    return Object(
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": name},
            "spec": {
                "replicas": 3,
                "selector": {"matchLabels": {"app": selector_value}},
                "template": {
                    "metadata": {"labels": {"app": selector_value}},
                    "spec": {"containers": [{"name": name, "image": image_ref}]},
                },
            },
        }
    )


def create_hpa_object(name: str, deployment_name: str) -> Object:
    """Create a HorizontalPodAutoscaler scaling a Deployment on cpu usage.

    The autoscaler keeps between 1 and 5 replicas with a target average cpu
    utilization of 80%.
    """
    return Object(
        {
            "apiVersion": "autoscaling/v2",
            "kind": "HorizontalPodAutoscaler",
            "metadata": {"name": name},
            "spec": {
                "scaleTargetRef": {
                    "kind": "Deployment",
                    "name": deployment_name,
                    "apiVersion": "apps/v1",
                },
                "minReplicas": 1,
                "maxReplicas": 5,
                "metrics": [
                    {
                        "type": "Resource",
                        "resource": {
                            "name": "cpu",
                            "target": {
                                "type": "Utilization",
                                "averageUtilization": 80,
                            },
                        },
                    }
                ],
            },
        }
    )


def create_namespace_object(name: str) -> Object:
    """Create a Namespace object."""
    if name == DEFAULT_NAMESPACE:
        raise ValidationError(f"Namespace name should not be {DEFAULT_NAMESPACE!r}")
    return Object({"apiVersion": "v1", "kind": NAMESPACE_KIND, "metadata": {"name": name}})


def create_service_object(
    name: str, selector_key: str, selector_value: str, port: int
) -> Object:
    """Create a LoadBalancer Service exposing `port` on matching pods."""
    return Object(
        {
            "apiVersion": "v1",
            "kind": SERVICE_KIND,
            "metadata": {"name": name},
            "spec": {
                "selector": {selector_key: selector_value},
                "ports": [{"protocol": "TCP", "port": port, "targetPort": port}],
                "type": "LoadBalancer",
            },
        }
    )


def _service_ips(obj: Object) -> str:
    ports, _ = fields.nested_list(obj.doc, "spec", "ports")
    if not ports:
        return ""
    if not isinstance(ports[0], dict):
        raise InputException(f"Failed to convert port of {obj} to map")
    port, found = fields.nested_int(ports[0], "port")
    if not found:
        raise InputException(f"Port field of {obj} is missing")

    ingress, _ = fields.nested_list(obj.doc, "status", "loadBalancer", "ingress")
    ips = []
    for entry in ingress:
        if not isinstance(entry, dict):
            raise InputException(f"Failed to convert ingress of {obj} to map")
        ip, _ = fields.nested_str(entry, "ip")
        if not ip:
            raise InputException(f"Ingress ip field of {obj} is missing or is empty")
        ips.append(ip if port == 80 else f"{ip}:{port}")
    return ", ".join(ips)


def _summary_extra_info(obj: Object) -> str:
    """Return extra information shown for an object in the deploy summary."""
    if obj.kind != SERVICE_KIND:
        return ""
    service_type, _ = fields.nested_str(obj.doc, "spec", "type")
    if not service_type:
        raise InputException(f"spec.type field of {obj} is missing or is empty")
    if service_type == "LoadBalancer":
        return _service_ips(obj)
    if service_type == "ExternalName":
        external_name, found = fields.nested_str(obj.doc, "spec", "externalName")
        if not found:
            raise InputException(f"spec.externalName field of {obj} is missing")
        return external_name
    return ""


def deploy_summary(objs: Objects) -> str:
    """Return a table summarizing the deploy status of the objects."""
    from .ready import is_ready  # pylint: disable=import-outside-toplevel

    rows: list[list[str]] = []
    trailer = [""]
    for obj in sort_objects(objs.values()):
        try:
            ready = "Yes" if is_ready(obj) else "No"
        except ReadinessError:
            ready = "Unknown"
        try:
            extra = _summary_extra_info(obj)
        except FieldTypeError as err:
            raise InputException(
                f"Failed to get resource summary extra info of {obj}: {err}"
            ) from err
        rows.append([obj.namespace or DEFAULT_NAMESPACE, obj.kind, obj.name, ready])
        trailer.append(extra)
    return "".join(
        f"{line}\n" for line in format_columns(SUMMARY_HEADERS, rows, trailer)
    )
