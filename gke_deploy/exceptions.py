"""Exceptions related to gke-deploy."""

__all__ = [
    "DeployException",
    "InputException",
    "DecodeError",
    "ParseError",
    "ValidationError",
    "CommandException",
    "ClusterError",
    "RegistryException",
    "ReadinessError",
    "DeployTimeoutError",
]


class DeployException(Exception):
    """Generic base exception used for this library."""


class InputException(DeployException):
    """Raised when the input files or values are not formatted as expected."""


class DecodeError(InputException):
    """Raised when a document can't be decoded into a resource object."""


class ParseError(InputException):
    """Raised when configuration files can't be found or read."""


class ValidationError(InputException):
    """Raised when flag values or requested mutations are not allowed."""


class FieldTypeError(InputException):
    """Raised when a nested field exists but has an unexpected type."""


class CommandException(DeployException):
    """Raised when there is a failure running a subcommand."""


class ClusterError(CommandException):
    """Raised when a cluster operation such as apply or get fails."""


class RegistryException(DeployException):
    """Raised when an image can't be resolved against its registry."""


class ReadinessError(DeployException):
    """Raised when the readiness of a deployed object can't be determined."""

    def __init__(self, resource_name: str, message: str) -> None:
        super().__init__(f"Unable to check if {resource_name} is ready: {message}")
        self.resource_name = resource_name
        self.message = message


class DeployTimeoutError(DeployException):
    """Raised when deployed objects did not become ready in time."""

    def __init__(self, timeout: float, pending: list[str]) -> None:
        super().__init__(
            f"Timed out after {timeout:g}s while waiting for deployed objects to be ready"
        )
        self.timeout = timeout
        self.pending = pending
