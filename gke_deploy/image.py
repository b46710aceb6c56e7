"""Helper functions for working with container image references.

An image reference has the form `[registry/]repository[:tag][@digest]`. The
bare *name* of an image is `registry/repository` with the tag and digest
removed, which is what container images are matched on:

```python
from gke_deploy.image import parse_reference

ref = parse_reference("gcr.io/my-project/my-app:1.0.0")
assert ref.name == "gcr.io/my-project/my-app"
assert ref.short_name == "my-app"
```
"""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
import hashlib
import logging
import re

from oras.client import OrasClient

from .exceptions import InputException, RegistryException

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "ImageReference",
    "parse_reference",
    "ImageResolver",
    "OrasImageResolver",
]

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

# Docker Hub is addressed by several hostnames that all mean the same registry.
_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}

_REPOSITORY_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")

_MANIFEST_MEDIA_TYPES = [
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.docker.distribution.manifest.v2+json",
]


@dataclass(frozen=True)
class ImageReference:
    """A parsed container image reference."""

    registry: str
    """Registry host, e.g. `gcr.io`."""

    repository: str
    """Repository within the registry, e.g. `my-project/my-app`."""

    tag: str | None = None
    """Tag of the image, if provided."""

    digest: str | None = None
    """Digest of the image (`algorithm:hex`), if provided."""

    @property
    def name(self) -> str:
        """Return the registry and repository without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def short_name(self) -> str:
        """Return the last path component of the repository."""
        return self.repository.split("/")[-1]

    @property
    def identifier(self) -> str:
        """Return the digest if set, otherwise the tag."""
        return self.digest or self.tag or DEFAULT_TAG

    def with_digest(self, digest: str) -> str:
        """Return the `name@digest` form of this image."""
        return f"{self.name}@{digest}"

    def __str__(self) -> str:
        if self.digest:
            return f"{self.name}@{self.digest}"
        return f"{self.name}:{self.tag or DEFAULT_TAG}"


def parse_reference(value: str) -> ImageReference:
    """Parse an image reference, raising `InputException` if it is malformed."""
    if not value or value != value.strip():
        raise InputException(f"Invalid image reference {value!r}")
    remainder = value
    digest: str | None = None
    if "@" in remainder:
        remainder, digest = remainder.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise InputException(
                f"Invalid image reference {value!r}: bad digest {digest!r}"
            )
    tag: str | None = None
    last_slash = remainder.rfind("/")
    last_colon = remainder.rfind(":")
    if last_colon > last_slash:
        remainder, tag = remainder[:last_colon], remainder[last_colon + 1 :]
        if not _TAG_RE.match(tag):
            raise InputException(f"Invalid image reference {value!r}: bad tag {tag!r}")

    registry = DEFAULT_REGISTRY
    repository = remainder
    parts = remainder.split("/", 1)
    if len(parts) == 2 and (
        "." in parts[0] or ":" in parts[0] or parts[0] == "localhost"
    ):
        registry, repository = parts
    if registry in _DOCKER_HUB_ALIASES:
        registry = DEFAULT_REGISTRY
        if "/" not in repository:
            repository = f"library/{repository}"
    if not _REPOSITORY_RE.match(repository):
        raise InputException(
            f"Invalid image reference {value!r}: bad repository {repository!r}"
        )
    return ImageReference(
        registry=registry, repository=repository, tag=tag, digest=digest
    )


def image_name(value: str) -> str:
    """Return the bare name of an image reference string."""
    return parse_reference(value).name


class ImageResolver(ABC):
    """Resolves an image reference to the digest of its manifest."""

    @abstractmethod
    async def resolve_digest(self, ref: ImageReference) -> str:
        """Return the image digest in `algorithm:hex` form."""


class OrasImageResolver(ImageResolver):
    """Resolves digests by asking the registry for the image manifest."""

    def __init__(self, insecure: bool = False) -> None:
        """Initialize OrasImageResolver."""
        self._client = OrasClient(insecure=insecure)
        self._scheme = "http" if insecure else "https"

    def _manifest_url(self, ref: ImageReference) -> str:
        registry = ref.registry
        if registry == DEFAULT_REGISTRY:
            registry = "registry-1.docker.io"
        return f"{self._scheme}://{registry}/v2/{ref.repository}/manifests/{ref.identifier}"

    def _resolve(self, ref: ImageReference) -> str:
        url = self._manifest_url(ref)
        headers = {"Accept": ", ".join(_MANIFEST_MEDIA_TYPES)}
        _LOGGER.debug("Fetching manifest for %s from %s", ref, url)
        response = self._client.remote.do_request(url, "HEAD", headers=headers)
        if response.status_code == 200 and (
            digest := response.headers.get("Docker-Content-Digest")
        ):
            return str(digest)
        # Some registries omit the digest header on HEAD requests
        response = self._client.remote.do_request(url, "GET", headers=headers)
        if response.status_code != 200:
            raise RegistryException(
                f"Failed to get manifest for image {ref}: "
                f"status {response.status_code}: {response.text}"
            )
        if digest := response.headers.get("Docker-Content-Digest"):
            return str(digest)
        return f"sha256:{hashlib.sha256(response.content).hexdigest()}"

    async def resolve_digest(self, ref: ImageReference) -> str:
        """Return the digest of the image manifest."""
        if ref.digest:
            return ref.digest
        try:
            return await asyncio.to_thread(self._resolve, ref)
        except RegistryException:
            raise
        except Exception as err:
            raise RegistryException(
                f"Failed to get remote image reference {ref}: {err}"
            ) from err
