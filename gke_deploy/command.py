"""Library for issuing commands using asyncio and returning the result."""

import asyncio
import contextlib
from abc import ABC, abstractmethod
import logging
import shlex
import subprocess
from dataclasses import dataclass
from collections.abc import Sequence
import os
import signal

from .exceptions import CommandException

_LOGGER = logging.getLogger(__name__)

_CONCURRENCY = 20
_SEM = asyncio.Semaphore(_CONCURRENCY)
_TIMEOUT = 120.0


# No public API
__all__: list[str] = []


class Task(ABC):
    """An instance of a async task to execute."""

    @abstractmethod
    async def run(self, stdin: bytes | None = None) -> bytes:
        """Execute the task and return the result."""


@dataclass
class Command(Task):
    """An instance of a command to run."""

    cmd: list[str]
    """Array of command line arguments."""

    exc: type[CommandException] = CommandException
    """Exception to throw in case of an error."""

    env: dict[str, str] | None = None
    """Environment variables for the subprocess."""

    verbose: bool = False
    """Log the command at INFO instead of DEBUG."""

    @property
    def string(self) -> str:
        """Render the command as a single string."""
        return " ".join([shlex.quote(arg) for arg in self.cmd])

    def __str__(self) -> str:
        """Render as a debug string."""
        return self.string

    async def run(self, stdin: bytes | None = None) -> bytes:
        """Run the command, returning stdout."""
        _LOGGER.log(
            logging.INFO if self.verbose else logging.DEBUG, "Running command: %s", self
        )
        env = {
            **os.environ,
            **(self.env if self.env else {}),
        }
        proc = await asyncio.create_subprocess_shell(
            self.string,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=env,
            start_new_session=True,
        )
        try:
            out, err = await proc.communicate(stdin)
        except asyncio.CancelledError:
            # Kill the whole process group, not just the shell
            _LOGGER.debug("Killing cancelled command: %s", self)
            with contextlib.suppress(ProcessLookupError):
                os.killpg(proc.pid, signal.SIGKILL)
            await proc.wait()
            raise
        if proc.returncode:
            errors = [f"Command '{self}' failed with return code {proc.returncode}"]
            if out:
                errors.append(out.decode("utf-8"))
            if err:
                errors.append(err.decode("utf-8"))
            _LOGGER.debug("\n".join(errors))
            raise self.exc("\n".join(errors))
        return out


class Stash(Task):
    """A task that emits previously captured content, e.g. a manifest to pipe."""

    def __init__(self, out: bytes) -> None:
        """Initialize Stash."""
        self._out = out

    async def run(self, stdin: bytes | None = None) -> bytes:
        """Run the task."""
        return self._out

    def __str__(self) -> str:
        """Render as a debug string."""
        return f"<stash {len(self._out)} bytes>"


async def _run_piped_with_sem(cmds: Sequence[Task], timeout: float | None) -> str:
    """Run a set of commands, piped together, returning stdout of last."""
    stdin = None
    out = None
    for cmd in cmds:
        try:
            out = await asyncio.wait_for(cmd.run(stdin), timeout)
        except asyncio.exceptions.TimeoutError as err:
            if isinstance(cmd, Command):
                raise cmd.exc(f"Command '{cmd}' timed out") from err
            raise err
        stdin = out
    return out.decode("utf-8") if out else ""


async def run_piped(
    cmds: Sequence[Task], timeout: float | None = _TIMEOUT
) -> str:
    """Run a set of commands, piped together, returning stdout of last.

    A timeout of `None` lets each command run until it exits.
    """
    async with _SEM:
        result = await _run_piped_with_sem(cmds, timeout)
    return result


async def run(cmd: Task, timeout: float | None = _TIMEOUT) -> str:
    """Run the specified command and return stdout."""
    return await run_piped([cmd], timeout)
