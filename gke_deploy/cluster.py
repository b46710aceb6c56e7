"""Library for pushing objects to a cluster and reading them back with `kubectl`.

The deployer only talks to the cluster through the `ClusterGateway`
interface. `Kubectl` implements it by running `kubectl` against the current
kubeconfig context:

```python
from gke_deploy.cluster import Kubectl, get_deployed_object

kubectl = Kubectl()
await kubectl.apply("output/expanded/deployment.yaml", namespace="prod")
obj = await get_deployed_object(kubectl, "Deployment", "my-app", "prod")
```
"""

from abc import ABC, abstractmethod
import logging
from pathlib import Path

from . import command
from .exceptions import ClusterError, DecodeError
from .resource import Object, decode

__all__ = [
    "ClusterGateway",
    "Kubectl",
    "get_deployed_object",
    "deployed_object_exists",
]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"
YAML_OUTPUT = "yaml"


class ClusterGateway(ABC):
    """Applies objects to a cluster and fetches their current state."""

    @abstractmethod
    async def apply(self, source: str | Path, namespace: str = "") -> None:
        """Apply a configuration file, directory or url to the cluster."""

    @abstractmethod
    async def apply_from_string(self, content: str, namespace: str = "") -> None:
        """Apply the configuration contained in a string to the cluster."""

    @abstractmethod
    async def get(
        self,
        kind: str,
        name: str,
        namespace: str = "",
        output: str = YAML_OUTPUT,
        ignore_not_found: bool = False,
    ) -> str:
        """Return the deployed object, or empty string if absent and ignored."""


class Kubectl(ClusterGateway):
    """A cluster gateway that shells out to `kubectl`."""

    def __init__(self, verbose: bool = False, server_dry_run: bool = False) -> None:
        """Initialize Kubectl."""
        self._verbose = verbose
        self._server_dry_run = server_dry_run

    def _command(self, args: list[str]) -> command.Command:
        return command.Command(
            [KUBECTL_BIN] + args, exc=ClusterError, verbose=self._verbose
        )

    def _apply_args(self, source: str, namespace: str) -> list[str]:
        args = ["apply", "-f", source]
        if namespace:
            args.extend(["-n", namespace])
        if self._server_dry_run:
            args.append("--dry-run=server")
        return args

    async def apply(self, source: str | Path, namespace: str = "") -> None:
        """Apply a configuration file, directory or url to the cluster."""
        try:
            await command.run(self._command(self._apply_args(str(source), namespace)))
        except ClusterError as err:
            raise ClusterError(
                f"Command to apply kubernetes configs to cluster failed: {err}"
            ) from err

    async def apply_from_string(self, content: str, namespace: str = "") -> None:
        """Apply the configuration contained in a string to the cluster."""
        try:
            await command.run_piped(
                [
                    command.Stash(content.encode("utf-8")),
                    self._command(self._apply_args("-", namespace)),
                ]
            )
        except ClusterError as err:
            raise ClusterError(
                f"Command to apply kubernetes config from string to cluster failed: {err}"
            ) from err

    async def get(
        self,
        kind: str,
        name: str,
        namespace: str = "",
        output: str = YAML_OUTPUT,
        ignore_not_found: bool = False,
    ) -> str:
        """Return the deployed object, or empty string if absent and ignored."""
        args = ["get", kind]
        if name:
            args.append(name)
        if namespace:
            args.extend(["-n", namespace])
        if output:
            args.append(f"--output={output}")
        if ignore_not_found:
            args.append("--ignore-not-found=true")
        try:
            return await command.run(self._command(args))
        except ClusterError as err:
            raise ClusterError(f"Command to get kubernetes config failed: {err}") from err


async def get_deployed_object(
    gateway: ClusterGateway, kind: str, name: str, namespace: str = ""
) -> Object:
    """Return a fresh copy of a deployed object from the cluster."""
    content = await gateway.get(kind, name, namespace, YAML_OUTPUT, False)
    try:
        return decode(content)
    except DecodeError as err:
        raise ClusterError(
            f"Failed to decode deployed object with kind {kind!r} and name {name!r}: {err}"
        ) from err


async def deployed_object_exists(
    gateway: ClusterGateway, kind: str, name: str, namespace: str = ""
) -> bool:
    """Return True if an object with the kind and name exists on the cluster."""
    content = await gateway.get(kind, name, namespace, YAML_OUTPUT, True)
    return bool(content.strip())
