"""Flags and helpers shared by the gke-deploy commands."""

from argparse import (
    Action,
    ArgumentError,
    ArgumentParser,
    ArgumentTypeError,
    BooleanOptionalAction,
    Namespace,
)
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging
import os
from pathlib import Path
import re
import shutil
import tempfile
from typing import Any

from aiofiles.ospath import isdir

from gke_deploy.cluster import KUBECTL_BIN, Kubectl
from gke_deploy.config import DEFAULT_WAIT_TIMEOUT, Link
from gke_deploy.deployer import Deployer
from gke_deploy.exceptions import (
    CommandException,
    DeployTimeoutError,
    ValidationError,
)
from gke_deploy.gcloud import GCLOUD_BIN, Gcloud
from gke_deploy.gcs import GCS, BlobTransfer, Gsutil, is_gcs_path
from gke_deploy.image import OrasImageResolver
from gke_deploy.resource import has_yaml_suffix

_LOGGER = logging.getLogger(__name__)

DEFAULT_OUTPUT = "./output"

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Parse a duration such as `5m` or `1h30m` into seconds."""
    text = value.strip()
    if text == "0":
        return 0.0
    if not text:
        raise ArgumentTypeError("Duration must not be empty")
    pos = 0
    seconds = 0.0
    while pos < len(text):
        if not (match := _DURATION_RE.match(text, pos)):
            raise ArgumentTypeError(f"Invalid duration {value!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return seconds


def parse_key_value(value: str) -> tuple[str, str] | None:
    """Parse a single `key=value` pair, returning None for an empty entry."""
    pair = value.strip().strip(",")
    if not pair:
        return None
    parts = pair.split("=")
    if len(parts) != 2:
        raise ValueError(f"Invalid key value pair: {pair!r}")
    key, val = parts[0].strip(), parts[1].strip()
    if not key:
        raise ValueError("Key must not be empty string")
    if not val:
        raise ValueError("Value must not be empty string")
    return key, val


class KeyValueAppendAction(Action):
    """Append comma separated key=value pairs to the argument dict."""

    def __call__(
        self,
        parser: ArgumentParser,
        namespace: Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        result = dict(getattr(namespace, self.dest) or {})
        for value in values.split(","):
            try:
                pair = parse_key_value(value)
            except ValueError as err:
                raise ArgumentError(self, str(err)) from err
            if pair is not None:
                result[pair[0]] = pair[1]
        setattr(namespace, self.dest, result)


class LinkAppendAction(Action):
    """Append a description=url link to the argument list."""

    def __call__(
        self,
        parser: ArgumentParser,
        namespace: Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        result = list(getattr(namespace, self.dest) or [])
        description, sep, url = values.partition("=")
        if not sep or not description.strip() or not url.strip():
            raise ArgumentError(
                self, f"Expected description=url format but got {values!r}"
            )
        result.append(Link(description=description.strip(), url=url.strip()))
        setattr(namespace, self.dest, result)


def add_filename_flags(args: ArgumentParser, required: bool = False) -> None:
    """Add flags selecting the configuration files."""
    args.add_argument(
        "--filename",
        "-f",
        type=str,
        default="",
        required=required,
        help="Configuration file or directory of configuration files to use to "
        'create Kubernetes objects (files must end with ".yml" or ".yaml"). '
        "Use - to read from stdin, or a gs:// url to read from Cloud Storage.",
    )
    args.add_argument(
        "--recursive",
        "-R",
        action=BooleanOptionalAction,
        default=False,
        help="Recursively search through the configuration directory for all yaml files.",
    )
    args.add_argument(
        "--verbose",
        "-V",
        action=BooleanOptionalAction,
        default=False,
        help="Log underlying commands being called.",
    )


def add_prepare_flags(args: ArgumentParser) -> None:
    """Add flags used when preparing a deployment."""
    args.add_argument(
        "--image",
        "-i",
        type=str,
        default="",
        help="Image to be deployed. Without configuration files, a suggested "
        "Deployment and HorizontalPodAutoscaler are created for the image.",
    )
    args.add_argument(
        "--app",
        "-a",
        type=str,
        default="",
        help="Application name of the Kubernetes deployment.",
    )
    args.add_argument(
        "--version",
        "-v",
        type=str,
        default="",
        help="Version of the Kubernetes deployment.",
    )
    args.add_argument(
        "--label",
        "-L",
        action=KeyValueAppendAction,
        default={},
        help="Label(s) to add to Kubernetes configuration files (k1=v1). "
        "Labels can be comma separated or set as separate flags.",
    )
    args.add_argument(
        "--annotation",
        "-A",
        action=KeyValueAppendAction,
        default={},
        help="Annotation(s) to add to Kubernetes configuration files (k1=v1). "
        "Annotations can be comma separated or set as separate flags.",
    )
    args.add_argument(
        "--output",
        "-o",
        type=str,
        default=DEFAULT_OUTPUT,
        help="Target directory to store suggested and expanded configuration "
        'files, in "<output>/suggested" and "<output>/expanded".',
    )
    args.add_argument(
        "--expose",
        "-x",
        type=int,
        default=0,
        help="Creates a LoadBalancer Service exposing the application on this port.",
    )
    args.add_argument(
        "--create-application-cr",
        action=BooleanOptionalAction,
        default=False,
        help="Create an Application object grouping the deployed objects.",
    )
    args.add_argument(
        "--links",
        action=LinkAppendAction,
        default=[],
        help="Link(s) to add to the Application object (description=url).",
    )


def add_namespace_flag(args: ArgumentParser) -> None:
    """Add the namespace flag."""
    args.add_argument(
        "--namespace",
        "-n",
        type=str,
        default="",
        help="Namespace to deploy to. If omitted, the namespace of each object is used.",
    )


def add_apply_flags(args: ArgumentParser) -> None:
    """Add flags used when applying a deployment."""
    args.add_argument(
        "--cluster",
        "-c",
        type=str,
        default="",
        help="Name of GKE cluster to deploy to.",
    )
    args.add_argument(
        "--location",
        "-l",
        type=str,
        default="",
        help="Region/zone of GKE cluster to deploy to.",
    )
    args.add_argument(
        "--project",
        "-p",
        type=str,
        default="",
        help="Project of GKE cluster to deploy to, defaults to the current project.",
    )
    args.add_argument(
        "--timeout",
        "-t",
        type=parse_duration,
        default=DEFAULT_WAIT_TIMEOUT,
        help="Timeout for waiting for Kubernetes objects to be ready, e.g. 5m.",
    )
    args.add_argument(
        "--server-dry-run",
        action=BooleanOptionalAction,
        default=False,
        help="Submit objects to the server without persisting them.",
    )


def validate_prepare_args(
    filename: str, image: str, output: str, expose: int
) -> None:
    """Validate flags used when preparing a deployment."""
    if not filename and not image:
        raise ValidationError("Omitting -f|--filename requires -i|--image to be set")
    if not output:
        raise ValidationError("Value of -o|--output cannot be empty")
    if expose < 0:
        raise ValidationError("Value of -x|--expose must be > 0")
    if expose > 0 and not image:
        raise ValidationError(
            "Exposing a deployed workload object requires -i|--image to be set"
        )


def validate_apply_args(cluster: str, location: str, use_gcloud: bool) -> None:
    """Validate flags used when applying a deployment."""
    if cluster and not location:
        raise ValidationError(
            "You must set -l|--location flag because -c|--cluster flag is set"
        )
    if location and not cluster:
        raise ValidationError(
            "You must set -c|--cluster flag because -l|--location flag is set"
        )
    if cluster and not use_gcloud:
        raise ValidationError(
            f"{GCLOUD_BIN} must be installed and in PATH to use -c|--cluster and -l|--location"
        )


def gcloud_in_path() -> bool:
    """Return True if `gcloud` can be found."""
    return shutil.which(GCLOUD_BIN) is not None


def create_deployer(
    use_gcloud: bool,
    verbose: bool,
    server_dry_run: bool = False,
    require_kubectl: bool = True,
) -> Deployer:
    """Create a deployer backed by the command line tools."""
    if require_kubectl and shutil.which(KUBECTL_BIN) is None:
        raise CommandException(f"{KUBECTL_BIN} must be installed and in PATH")
    return Deployer(
        Kubectl(verbose=verbose, server_dry_run=server_dry_run),
        OrasImageResolver(),
        context=Gcloud(verbose=verbose) if use_gcloud else None,
        server_dry_run=server_dry_run,
    )


def create_blob_transfer(verbose: bool) -> BlobTransfer:
    """Create the Cloud Storage blob transfer."""
    return GCS(Gsutil(verbose=verbose))


def suggested_output_path(root: str) -> str:
    """Return the directory for suggested configuration files."""
    return os.path.join(root, "suggested")


def expanded_output_path(root: str) -> str:
    """Return the directory for expanded configuration files."""
    return os.path.join(root, "expanded")


@asynccontextmanager
async def local_config(config: str, blob: BlobTransfer) -> AsyncGenerator[str, None]:
    """Yield a local path for the configuration files.

    Configuration files in Cloud Storage are downloaded to a temporary
    directory first.
    """
    if not is_gcs_path(config):
        yield config
        return
    with tempfile.TemporaryDirectory(prefix="gke-deploy-config-") as tmp_dir:
        name = config.rstrip("/").rsplit("/", 1)[-1]
        dst = Path(tmp_dir) / name
        directory = not has_yaml_suffix(name)
        await blob.download(
            config.rstrip("/"), str(tmp_dir) if directory else str(dst), directory
        )
        yield str(dst)


@asynccontextmanager
async def local_output(
    output: str, blob: BlobTransfer
) -> AsyncGenerator[str, None]:
    """Yield a local output directory.

    When the output is a Cloud Storage url, files written to the directory are
    uploaded once the caller is done with it. A deploy that timed out waiting
    for objects to be ready still uploads what it wrote.
    """
    if not is_gcs_path(output):
        yield output
        return
    with tempfile.TemporaryDirectory(prefix="gke-deploy-output-") as tmp_dir:
        try:
            yield tmp_dir
        except DeployTimeoutError:
            await _upload_output(tmp_dir, output, blob)
            raise
        await _upload_output(tmp_dir, output, blob)


async def _upload_output(local_dir: str, output: str, blob: BlobTransfer) -> None:
    for name in sorted(os.listdir(local_dir)):
        src = os.path.join(local_dir, name)
        if await isdir(src):
            await blob.upload(src, f"{output.rstrip('/')}/{name}")
