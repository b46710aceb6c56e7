"""Options controlling how a deployment is prepared and applied."""

from dataclasses import dataclass, field

from .application import Link

__all__ = [
    "PrepareOptions",
    "ApplyOptions",
    "Link",
]

DEFAULT_WAIT_TIMEOUT = 5 * 60.0


@dataclass
class PrepareOptions:
    """Inputs for expanding configuration files into their deployable form."""

    suggested_output: str
    """Directory the suggested configuration files are saved to."""

    expanded_output: str
    """Directory the expanded configuration files are saved to."""

    image: str | None = None
    """Image reference to pin to a digest, e.g. `gcr.io/my-project/my-app:1.0.0`."""

    app_name: str = ""
    """Value of the `app.kubernetes.io/name` label."""

    app_version: str = ""
    """Value of the `app.kubernetes.io/version` label."""

    config: str | None = None
    """Configuration file or directory, or `-` for stdin."""

    namespace: str = ""
    """Namespace that all objects are deployed to."""

    labels: dict[str, str] = field(default_factory=dict)
    """Custom labels added to every object."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Custom annotations added to every object."""

    expose_port: int = 0
    """Port of a LoadBalancer Service created for the application, if positive."""

    recursive: bool = False
    """Recurse into subdirectories of `config`."""

    create_application_cr: bool = False
    """Create an Application object grouping all deployed objects."""

    links: list[Link] = field(default_factory=list)
    """Links attached to the Application object."""


@dataclass
class ApplyOptions:
    """Inputs for applying configuration files to a cluster."""

    config: str
    """Configuration file or directory, or `-` for stdin."""

    cluster_name: str = ""
    """Name of the cluster, empty to use the current context."""

    cluster_location: str = ""
    """Region or zone of the cluster."""

    cluster_project: str = ""
    """Project of the cluster, looked up from the cloud context when empty."""

    namespace: str = ""
    """Namespace that overrides the namespace of every object."""

    wait_timeout: float = DEFAULT_WAIT_TIMEOUT
    """Seconds to wait for deployed objects to be ready."""

    recursive: bool = False
    """Recurse into subdirectories of `config`."""
