"""gke-deploy apply action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from gke_deploy.config import ApplyOptions

from . import common

_LOGGER = logging.getLogger(__name__)

DESCRIPTION = """Apply Kubernetes configuration files to a GKE cluster:
  - Apply configuration files to the target cluster with the provided namespace.
  - Wait for the deployed objects to be ready before exiting."""


class ApplyAction:
    """gke-deploy apply action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "apply",
                aliases=["a"],
                help="Apply configuration files to a GKE cluster",
                description=DESCRIPTION,
            ),
        )
        common.add_filename_flags(args, required=True)
        common.add_namespace_flag(args)
        common.add_apply_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        filename: str,
        namespace: str,
        cluster: str,
        location: str,
        project: str,
        timeout: float,
        recursive: bool,
        server_dry_run: bool,
        verbose: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        use_gcloud = common.gcloud_in_path()
        common.validate_apply_args(cluster, location, use_gcloud)
        deployer = common.create_deployer(use_gcloud, verbose, server_dry_run)
        blob = common.create_blob_transfer(verbose)
        async with common.local_config(filename, blob) as config:
            await deployer.apply(
                ApplyOptions(
                    config=config,
                    cluster_name=cluster,
                    cluster_location=location,
                    cluster_project=project,
                    namespace=namespace,
                    wait_timeout=timeout,
                    recursive=recursive,
                )
            )
