"""Library for looking up the Google Cloud context with `gcloud`."""

from abc import ABC, abstractmethod
import logging

from . import command
from .exceptions import ClusterError, CommandException

__all__ = [
    "CloudContext",
    "Gcloud",
    "get_project",
    "get_account",
]

_LOGGER = logging.getLogger(__name__)

GCLOUD_BIN = "gcloud"

SERVICE_ACCOUNT_DOMAIN = "gserviceaccount.com"


class CloudContext(ABC):
    """Provides cluster credentials and cloud configuration values."""

    @abstractmethod
    async def authorize_cluster_access(
        self, name: str, location: str, project: str
    ) -> None:
        """Fetch credentials so that the cluster is the current context."""

    @abstractmethod
    async def get_config_value(self, key: str) -> str:
        """Return the value of a configuration property such as `project`."""


class Gcloud(CloudContext):
    """A cloud context that shells out to `gcloud`."""

    def __init__(self, verbose: bool = False) -> None:
        """Initialize Gcloud."""
        self._verbose = verbose

    async def authorize_cluster_access(
        self, name: str, location: str, project: str
    ) -> None:
        """Run `gcloud container clusters get-credentials` for the cluster."""
        args = [
            GCLOUD_BIN,
            "container",
            "clusters",
            "get-credentials",
            name,
            f"--zone={location}",
            f"--project={project}",
            "--quiet",
        ]
        try:
            await command.run(
                command.Command(args, exc=ClusterError, verbose=self._verbose)
            )
        except ClusterError as err:
            raise ClusterError(f"Failed to authorize access: {err}") from err

    async def get_config_value(self, key: str) -> str:
        """Return the value of a `gcloud config` property."""
        args = [GCLOUD_BIN, "config", "get-value", key, "--quiet"]
        try:
            out = await command.run(command.Command(args, verbose=self._verbose))
        except CommandException as err:
            raise CommandException(
                f"Command to get property value failed: {err}"
            ) from err
        return out.strip()


async def get_project(context: CloudContext) -> str:
    """Return the current project."""
    try:
        return await context.get_config_value("project")
    except CommandException as err:
        raise CommandException(f"Failed to get project: {err}") from err


async def get_account(context: CloudContext) -> str:
    """Return the current account."""
    try:
        return await context.get_config_value("account")
    except CommandException as err:
        raise CommandException(f"Failed to get account: {err}") from err


def account_type(account: str) -> str:
    """Return the IAM member type of an account."""
    if SERVICE_ACCOUNT_DOMAIN in account:
        return "serviceAccount"
    return "user"


def iam_binding_hint(project: str, account: str) -> str:
    """Return the command granting the account access to clusters in a project."""
    return (
        f"gcloud projects add-iam-policy-binding {project} "
        f"--member={account_type(account)}:{account} --role=roles/container.developer"
    )
