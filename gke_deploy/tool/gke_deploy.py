"""Command line tool for preparing and deploying configuration files to GKE."""

import argparse
import asyncio
import logging
import sys
import traceback

from gke_deploy.exceptions import DeployException
from . import apply, prepare, run

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Deploy to GKE using Kubernetes configuration files.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    prepare.PrepareAction.register(subparsers)
    apply.ApplyAction.register(subparsers)
    run.RunAction.register(subparsers)
    return parser


def main() -> None:
    """gke-deploy command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except DeployException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("gke-deploy error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
