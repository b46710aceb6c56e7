"""gke-deploy prepare action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from gke_deploy.config import Link, PrepareOptions

from . import common

_LOGGER = logging.getLogger(__name__)

DESCRIPTION = """Prepare to deploy to GKE by expanding Kubernetes configuration files:
  - Set the digest of images that match the --image flag, if provided.
  - Add app.kubernetes.io/name=<--app> label, if provided.
  - Add app.kubernetes.io/version=<--version> label, if provided.

Suggested configuration files are saved to "<--output>/suggested" and expanded
configuration files are saved to "<--output>/expanded"."""


class PrepareAction:
    """gke-deploy prepare action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "prepare",
                aliases=["p"],
                help="Prepare to deploy to GKE by expanding configuration files",
                description=DESCRIPTION,
            ),
        )
        common.add_filename_flags(args)
        common.add_prepare_flags(args)
        common.add_namespace_flag(args)
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
        verbose: bool,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        common.validate_prepare_args(filename, image, output, expose)
        deployer = common.create_deployer(
            common.gcloud_in_path(), verbose, require_kubectl=False
        )
        blob = common.create_blob_transfer(verbose)
        async with common.local_config(filename, blob) as config:
            async with common.local_output(output, blob) as output_dir:
                await deployer.prepare(
                    PrepareOptions(
                        suggested_output=common.suggested_output_path(output_dir),
                        expanded_output=common.expanded_output_path(output_dir),
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
