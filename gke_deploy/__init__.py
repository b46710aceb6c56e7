"""
.. include:: ../README.md
"""

__all__ = [
    "resource",
    "ready",
    "application",
    "deployer",
    "config",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
