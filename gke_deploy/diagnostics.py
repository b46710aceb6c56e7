"""Sink for non-fatal warnings emitted while preparing or applying a deployment.

Warnings never alter control flow. They are collected so that callers (and
tests) can inspect them, and are also logged as they arrive.
"""

from dataclasses import dataclass, field
import logging

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "Diagnostic",
    "Diagnostics",
]


@dataclass(frozen=True)
class Diagnostic:
    """A single warning message."""

    message: str

    def __str__(self) -> str:
        return self.message


@dataclass
class Diagnostics:
    """Collects warnings emitted during a deployment."""

    warnings: list[Diagnostic] = field(default_factory=list)

    def warning(self, message: str) -> None:
        """Record and log a warning."""
        _LOGGER.warning(message)
        self.warnings.append(Diagnostic(message))

    @property
    def messages(self) -> list[str]:
        """Return the recorded warning messages."""
        return [diag.message for diag in self.warnings]

    def __len__(self) -> int:
        return len(self.warnings)


def get_diagnostics(diagnostics: Diagnostics | None) -> Diagnostics:
    """Return the provided sink, or a throwaway sink that only logs."""
    return diagnostics if diagnostics is not None else Diagnostics()
