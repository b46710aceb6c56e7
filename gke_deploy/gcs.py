"""Library for copying configuration files to and from Cloud Storage.

`GCS` wraps a `Gsutil` copier with a per-attempt timeout and retries with a
doubling delay between attempts.
"""

from abc import ABC, abstractmethod
import asyncio
import logging

from aiofiles.ospath import isdir
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from . import command
from .clock import Clock, SystemClock
from .exceptions import CommandException

__all__ = [
    "BlobTransfer",
    "Gsutil",
    "GCS",
    "is_gcs_path",
]

_LOGGER = logging.getLogger(__name__)

GSUTIL_BIN = "gsutil"
GCS_PREFIX = "gs://"

DEFAULT_TIMEOUT = 60 * 60.0
DEFAULT_RETRIES = 3
DEFAULT_DELAY = 1.0


def is_gcs_path(path: str) -> bool:
    """Return True if the path is a Cloud Storage url."""
    return path.startswith(GCS_PREFIX)


class BlobTransfer(ABC):
    """Moves configuration files between local disk and object storage."""

    @abstractmethod
    async def download(self, src: str, dst: str, recursive: bool = False) -> None:
        """Copy the object(s) at `src` to the local path `dst`."""

    @abstractmethod
    async def upload(self, src: str, dst: str) -> None:
        """Copy the local path `src` to the object storage url `dst`."""


class Gsutil:
    """Copies files with `gsutil cp`."""

    def __init__(self, verbose: bool = False) -> None:
        """Initialize Gsutil."""
        self._verbose = verbose

    async def copy(self, src: str, dst: str, recursive: bool = False) -> None:
        """Copy files from `src` to `dst`."""
        args = [GSUTIL_BIN, "cp"]
        if recursive:
            args.append("-r")
        args.extend([src, dst])
        try:
            await command.run(command.Command(args, verbose=self._verbose), timeout=None)
        except CommandException as err:
            raise CommandException(
                f"Copy file(s) with {GSUTIL_BIN} failed: {err}"
            ) from err


class GCS(BlobTransfer):
    """Blob transfer with retries on top of a `Gsutil` copier."""

    def __init__(
        self,
        copier: Gsutil,
        retries: int = DEFAULT_RETRIES,
        delay: float = DEFAULT_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Clock | None = None,
    ) -> None:
        """Initialize GCS."""
        self._copier = copier
        self._retries = retries
        self._delay = delay
        self._timeout = timeout or DEFAULT_TIMEOUT
        self._clock = clock or SystemClock()

    async def download(self, src: str, dst: str, recursive: bool = False) -> None:
        """Copy the object(s) at `src` to the local path `dst`."""
        _LOGGER.info("Downloading file(s) from GCS. Source: %s Destination: %s", src, dst)
        await self._copy_with_retry(src, dst, recursive)

    async def upload(self, src: str, dst: str) -> None:
        """Copy the local path `src` to the object storage url `dst`."""
        _LOGGER.info("Uploading file(s) to GCS. Source: %s Destination: %s", src, dst)
        await self._copy_with_retry(src, dst, await isdir(src))

    async def _copy_with_timeout(self, src: str, dst: str, recursive: bool) -> None:
        _LOGGER.debug("Operation will time out in %s seconds", self._timeout)
        try:
            await asyncio.wait_for(
                self._copier.copy(src, dst, recursive), self._timeout
            )
        except asyncio.TimeoutError as err:
            raise CommandException(
                f"GCS timeout copying {src} to {dst} after {self._timeout:g}s"
            ) from err

    async def _copy_with_retry(self, src: str, dst: str, recursive: bool) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._retries + 1),
            wait=wait_exponential(multiplier=self._delay),
            retry=retry_if_exception_type(CommandException),
            before_sleep=before_sleep_log(_LOGGER, logging.INFO),
            sleep=self._clock.sleep,
            reraise=True,
        )
        started = self._clock.now()
        await retrying(self._copy_with_timeout, src, dst, recursive)
        _LOGGER.debug("Copy finished after %.1fs", self._clock.now() - started)
