"""Fixtures and fake collaborators for gke-deploy tests."""

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
import yaml

from gke_deploy.clock import Clock
from gke_deploy.cluster import ClusterGateway
from gke_deploy.exceptions import ClusterError, CommandException
from gke_deploy.gcloud import CloudContext
from gke_deploy.image import ImageReference, ImageResolver

TESTDATA_DIR = Path(__file__).parent / "testdata"

DIGEST = "sha256:" + "a" * 64


class FakeClock(Clock):
    """A clock that only moves forward when sleeping."""

    def __init__(self) -> None:
        self.time = 0.0
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.time += seconds


class FakeClusterGateway(ClusterGateway):
    """A cluster gateway returning scripted objects.

    Each `get` of an object returns the next scripted document for its kind
    and name, repeating the last one once the script runs out.
    """

    def __init__(self) -> None:
        self.applied: list[tuple[str, str]] = []
        self.applied_from_string: list[tuple[dict[str, Any], str]] = []
        self.gets: list[tuple[str, str, str]] = []
        self.existing: set[tuple[str, str]] = set()
        self.scripts: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.apply_error: str | None = None

    def script(self, kind: str, name: str, *docs: dict[str, Any]) -> None:
        self.scripts[(kind, name)] = list(docs)

    async def apply(self, source: Any, namespace: str = "") -> None:
        if self.apply_error:
            raise ClusterError(self.apply_error)
        self.applied.append((str(source), namespace))

    async def apply_from_string(self, content: str, namespace: str = "") -> None:
        if self.apply_error:
            raise ClusterError(self.apply_error)
        self.applied_from_string.append((yaml.safe_load(content), namespace))

    async def get(
        self,
        kind: str,
        name: str,
        namespace: str = "",
        output: str = "yaml",
        ignore_not_found: bool = False,
    ) -> str:
        self.gets.append((kind, name, namespace))
        if ignore_not_found:
            if (kind, name) in self.existing:
                return yaml.dump({"kind": kind, "metadata": {"name": name}})
            return ""
        if not (docs := self.scripts.get((kind, name))):
            raise ClusterError(f'{kind} "{name}" not found')
        doc = docs.pop(0) if len(docs) > 1 else docs[0]
        return yaml.dump(doc)

    @property
    def applied_kinds(self) -> list[str]:
        return [doc["kind"] for doc, _ in self.applied_from_string]


class FakeCloudContext(CloudContext):
    """A cloud context with fixed configuration values."""

    def __init__(
        self,
        project: str = "my-project",
        account: str | None = "user@example.com",
        authorize_error: str | None = None,
    ) -> None:
        self.project = project
        self.account = account
        self.authorize_error = authorize_error
        self.authorized: list[tuple[str, str, str]] = []

    async def authorize_cluster_access(
        self, name: str, location: str, project: str
    ) -> None:
        if self.authorize_error:
            raise ClusterError(self.authorize_error)
        self.authorized.append((name, location, project))

    async def get_config_value(self, key: str) -> str:
        if key == "project":
            return self.project
        if key == "account" and self.account is not None:
            return self.account
        raise CommandException(f"property {key} is not set")


class FakeImageResolver(ImageResolver):
    """An image resolver that returns a fixed digest."""

    def __init__(self, digest: str = DIGEST) -> None:
        self.digest = digest
        self.resolved: list[ImageReference] = []

    async def resolve_digest(self, ref: ImageReference) -> str:
        self.resolved.append(ref)
        return self.digest


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    """Fixture for a fake clock."""
    return FakeClock()


@pytest.fixture(name="gateway")
def gateway_fixture() -> FakeClusterGateway:
    """Fixture for a fake cluster gateway."""
    return FakeClusterGateway()


@pytest.fixture(name="resolver")
def resolver_fixture() -> FakeImageResolver:
    """Fixture for a fake image resolver."""
    return FakeImageResolver()


@pytest.fixture(name="testdata_dir")
def testdata_dir_fixture() -> Generator[Path, None, None]:
    """Fixture for the directory holding test configuration files."""
    yield TESTDATA_DIR


@pytest.fixture(name="cloud_context")
def cloud_context_fixture() -> FakeCloudContext:
    """Fixture for a fake cloud context."""
    return FakeCloudContext()
