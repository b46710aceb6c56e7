"""Library for installing the Application custom resource definition."""

import logging

from .cluster import ClusterGateway, deployed_object_exists
from .exceptions import ClusterError

__all__ = [
    "ensure_application_crd",
]

_LOGGER = logging.getLogger(__name__)

APPLICATION_CRD_NAME = (
    "customresourcedefinition.apiextensions.k8s.io/applications.app.k8s.io"
)
APPLICATION_CRD_INSTALL_URI = (
    "https://raw.githubusercontent.com/kubernetes-sigs/application/master/"
    "config/crd/bases/app.k8s.io_applications.yaml"
)


async def ensure_application_crd(gateway: ClusterGateway) -> None:
    """Install the Application CRD on the cluster if it is not installed."""
    try:
        installed = await deployed_object_exists(gateway, APPLICATION_CRD_NAME, "")
    except ClusterError as err:
        raise ClusterError(
            f"Failed to get config of CRD {APPLICATION_CRD_NAME!r}: {err}"
        ) from err
    if installed:
        _LOGGER.debug("Application CRD is already installed")
        return
    _LOGGER.info("Installing Application CRD")
    try:
        await gateway.apply(APPLICATION_CRD_INSTALL_URI)
    except ClusterError as err:
        raise ClusterError(f"Failed to apply Application CRD: {err}") from err
