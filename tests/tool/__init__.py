"""Test helpers for gke-deploy tools."""

from gke_deploy.command import Command, run

GKE_DEPLOY_BIN = "gke-deploy"


async def run_command(args: list[str], env: dict[str, str] | None = None) -> str:
    return await run(Command([GKE_DEPLOY_BIN] + args, env=env))
