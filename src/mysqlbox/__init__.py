"""
MySQLBox: disposable MySQL servers in Docker containers

Starts a MySQL server in a container for tests, waits until it accepts
connections, optionally runs an initial SQL script, and tears it down again.
"""

__version__ = "0.1.0"
__author__ = "MySQLBox Contributors"

from .box import MySQLBox, start
from .config import MySQLBoxConfig, MySQLBoxSettings
from .data import SQLData
from .exceptions import (
    ConnectTimeoutError,
    ContainerExitedError,
    InstanceAbsentError,
    MySQLBoxError,
    ProvisioningError,
    ReadinessError,
    ShutdownError,
    TableCleanError,
)
from .logging_config import setup_logging

__all__ = [
    "MySQLBox",
    "MySQLBoxConfig",
    "MySQLBoxSettings",
    "SQLData",
    "start",
    "setup_logging",
    "MySQLBoxError",
    "InstanceAbsentError",
    "ProvisioningError",
    "ReadinessError",
    "ConnectTimeoutError",
    "ContainerExitedError",
    "ShutdownError",
    "TableCleanError",
]
