"""Builder for the Application custom resource that groups deployed objects.

The Application resource (`app.k8s.io/v1beta1`) describes the kinds of
objects that make up an application and the label selector used to find
them. It is only created when requested on the command line.
"""

from dataclasses import dataclass, field
import logging
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from . import fields
from .exceptions import FieldTypeError, ValidationError
from .resource import APPLICATION_KIND, NAMESPACE_KIND, Object, Objects

__all__ = [
    "Link",
    "create_application_object",
    "set_application_links",
]

_LOGGER = logging.getLogger(__name__)

APPLICATION_API_VERSION = "app.k8s.io/v1beta1"
CORE_GROUP = "core"


@dataclass
class BaseModel(DataClassDictMixin):
    """Base class for the typed Application model."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass(frozen=True, order=True)
class GroupKind(DataClassDictMixin):
    """A kind of object that is a component of the application."""

    group: str
    """API group of the kind, `core` for the core API group."""

    kind: str
    """The kind of the object."""


@dataclass
class Link(BaseModel):
    """A link shown with the application, such as a dashboard or docs page."""

    description: str
    """Description of the link."""

    url: str
    """The url of the link."""


@dataclass
class Descriptor(BaseModel):
    """Human readable information about the application."""

    type: str | None = None
    """Type of the application."""

    version: str | None = None
    """Version of the application."""

    links: list[Link] | None = None
    """Links related to the application."""


@dataclass
class LabelSelector(BaseModel):
    """Selector matching objects belonging to the application."""

    match_labels: dict[str, str] = field(metadata=field_options(alias="matchLabels"))


@dataclass
class ApplicationSpec(BaseModel):
    """Spec of the Application resource."""

    component_kinds: list[GroupKind] = field(
        metadata=field_options(alias="componentKinds")
    )
    """Sorted set of the kinds of the component objects."""

    descriptor: Descriptor
    """Descriptor of the application."""

    selector: LabelSelector
    """Selector matching the component objects."""


@dataclass
class ObjectMeta(BaseModel):
    """Metadata of the Application resource."""

    name: str


@dataclass
class Application(BaseModel):
    """An Application resource."""

    metadata: ObjectMeta
    spec: ApplicationSpec
    api_version: str = field(
        metadata=field_options(alias="apiVersion"), default=APPLICATION_API_VERSION
    )
    kind: str = APPLICATION_KIND

    def to_object(self) -> Object:
        """Return the Application as a resource object."""
        doc = self.to_dict()
        # Emit the type fields first, as in other resource documents
        return Object(
            {
                "apiVersion": doc.pop("apiVersion"),
                "kind": doc.pop("kind"),
                **doc,
            }
        )


def _group(api_version: str) -> str:
    """Return the API group of an apiVersion such as `apps/v1`."""
    if "/" not in api_version:
        return CORE_GROUP
    return api_version.split("/", 1)[0]


def create_application_object(
    name: str,
    selector_key: str,
    selector_value: str,
    descriptor_type: str,
    descriptor_version: str,
    component_objs: Objects,
) -> Object:
    """Create an Application object describing the component objects.

    Namespace and Application objects are not components. An empty
    `descriptor_version` is left out of the resulting object.
    """
    component_kinds = sorted(
        {
            GroupKind(group=_group(obj.api_version), kind=obj.kind)
            for obj in component_objs.values()
            if obj.kind not in (NAMESPACE_KIND, APPLICATION_KIND)
        }
    )
    app = Application(
        metadata=ObjectMeta(name=name),
        spec=ApplicationSpec(
            component_kinds=component_kinds,
            descriptor=Descriptor(
                type=descriptor_type or None,
                version=descriptor_version or None,
            ),
            selector=LabelSelector(match_labels={selector_key: selector_value}),
        ),
    )
    return app.to_object()


def set_application_links(obj: Object, links: list[Link]) -> None:
    """Replace the `spec.descriptor.links` of an Application object."""
    if obj.kind != APPLICATION_KIND:
        raise ValidationError(f"Object {obj} must be an Application to add links")
    try:
        if not links:
            fields.remove_nested_field(obj.doc, "spec", "descriptor", "links")
            return
        fields.set_nested_field(
            obj.doc, [link.to_dict() for link in links], "spec", "descriptor", "links"
        )
    except FieldTypeError as err:
        raise ValidationError(f"Failed to set links of {obj}: {err}") from err
