"""
Exception hierarchy for MySQLBox

Errors raised while provisioning, waiting for, cleaning and tearing down
a MySQL container. Every error carries the failed operation and a small
context dictionary used in log messages.
"""

from typing import Any, Dict, Optional


class MySQLBoxError(Exception):
    """Base class for all MySQLBox errors."""

    def __init__(
        self,
        message: str,
        operation: str = "",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.context = context or {}

    def get_detailed_message(self) -> str:
        """Get a detailed error message including context."""
        parts = [self.message]
        if self.operation:
            parts.insert(0, f"{self.operation} failed:")
        if self.context:
            details = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({details})")
        return " ".join(parts)


class InstanceAbsentError(MySQLBoxError):
    """Raised when an operation needs a running instance and there is none."""

    def __init__(self, operation: str = ""):
        super().__init__("mysqlbox is not running", operation=operation)


# Provisioning


class ProvisioningError(MySQLBoxError):
    """Container could not be provisioned."""


class ScriptMaterializeError(ProvisioningError):
    """Initial SQL script could not be written to a temporary file."""


class ImagePullError(ProvisioningError):
    """Docker image pull failed."""


class ContainerCreateError(ProvisioningError):
    """Container creation failed."""


class ContainerStartError(ProvisioningError):
    """Container start failed."""


class PortResolutionError(ProvisioningError):
    """The host port bound to the MySQL port could not be resolved."""


# Readiness


class ReadinessError(MySQLBoxError):
    """MySQL never became ready."""


class ConnectTimeoutError(ReadinessError):
    """MySQL did not accept connections before the start deadline."""


class ContainerExitedError(ReadinessError):
    """The container exited before MySQL accepted connections."""


# Shutdown


class ShutdownError(MySQLBoxError):
    """Container teardown failed."""


class ContainerStopError(ShutdownError):
    """Container stop failed."""


class ContainerRemovalError(ShutdownError):
    """Waiting for the container removal failed."""


# Runtime


class LogStreamError(MySQLBoxError):
    """Attaching to the container output failed or the stream broke."""


class TableCleanError(MySQLBoxError):
    """Table truncation failed."""
