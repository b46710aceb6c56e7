"""Tests for command library."""

import asyncio
from pathlib import Path

import pytest

from gke_deploy.command import Command, Stash, run, run_piped
from gke_deploy.exceptions import ClusterError, CommandException


async def test_command() -> None:
    """Test stdout parsing of a command."""
    result = await run(Command(["echo", "Hello"]))
    assert result == "Hello\n"


async def test_run_piped_command() -> None:
    """Test running commands piped together."""
    result = await run_piped(
        [
            Command(["echo", "Hello"]),
            Command(["sed", "s/Hello/Goodbye/"]),
        ]
    )
    assert result == "Goodbye\n"


async def test_stash_piped_to_command() -> None:
    """Test content can be piped to the stdin of a command."""
    result = await run_piped([Stash(b"kind: Namespace\n"), Command(["cat"])])
    assert result == "kind: Namespace\n"


async def test_failed_command() -> None:
    """Test a failing command."""
    with pytest.raises(CommandException, match="return code 1"):
        await run(Command(["/bin/false"]))


async def test_failed_command_exception_type() -> None:
    """Test a command raises its configured exception type."""
    with pytest.raises(ClusterError, match="No such file"):
        await run(Command(["ls", "/does-not-exist"], exc=ClusterError))


async def test_command_timeout() -> None:
    """Test a command that takes too long."""
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sleep", "2"]), timeout=0.1)


async def test_command_timeout_kills_process(tmp_path: Path) -> None:
    """Test a timed out command does not keep running in the background."""
    marker = tmp_path / "marker"
    script = f"sleep 0.5; touch {marker}"
    with pytest.raises(CommandException, match="timed out"):
        await run(Command(["sh", "-c", script]), timeout=0.1)
    await asyncio.sleep(1.0)
    assert not marker.exists()
