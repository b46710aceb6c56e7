"""gke-deploy run action, which prepares and then applies a deployment."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from gke_deploy.config import ApplyOptions, Link, PrepareOptions

from . import common

_LOGGER = logging.getLogger(__name__)

DESCRIPTION = """Deploy to GKE in two phases.

Prepare phase:
  - Expand Kubernetes configuration files, setting image digests and labels.

Apply phase:
  - Apply the expanded configuration files to the target cluster.
  - Wait for the deployed objects to be ready before exiting."""


class RunAction:
    """gke-deploy run action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                aliases=["r", "deploy", "d"],
                help="Execute both the prepare and apply phase",
                description=DESCRIPTION,
            ),
        )
        common.add_filename_flags(args)
        common.add_prepare_flags(args)
        common.add_namespace_flag(args)
        common.add_apply_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        filename: str,
        image: str,
        app: str,
        version: str,
        namespace: str,
        label: dict[str, str],
        annotation: dict[str, str],
        output: str,
        expose: int,
        recursive: bool,
        create_application_cr: bool,
        links: list[Link],
        cluster: str,
        location: str,
        project: str,
        timeout: float,
        server_dry_run: bool,
        verbose: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        common.validate_prepare_args(filename, image, output, expose)
        use_gcloud = common.gcloud_in_path()
        common.validate_apply_args(cluster, location, use_gcloud)
        deployer = common.create_deployer(use_gcloud, verbose, server_dry_run)
        blob = common.create_blob_transfer(verbose)
        async with common.local_config(filename, blob) as config:
            async with common.local_output(output, blob) as output_dir:
                expanded_output = common.expanded_output_path(output_dir)
                await deployer.prepare(
                    PrepareOptions(
                        suggested_output=common.suggested_output_path(output_dir),
                        expanded_output=expanded_output,
                        image=image or None,
                        app_name=app,
                        app_version=version,
                        config=config or None,
                        namespace=namespace,
                        labels=label,
                        annotations=annotation,
                        expose_port=expose,
                        recursive=recursive,
                        create_application_cr=create_application_cr,
                        links=links,
                    )
                )
                await deployer.apply(
                    ApplyOptions(
                        config=expanded_output,
                        cluster_name=cluster,
                        cluster_location=location,
                        cluster_project=project,
                        namespace=namespace,
                        wait_timeout=timeout,
                    )
                )
