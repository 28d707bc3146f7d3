"""
Data models for MySQLBox

Defines the container description handed to the runtime, the readiness
states and result classes for readiness polling and table cleaning.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


MYSQL_CONTAINER_PORT = 3306
MYSQL_PORT = f"{MYSQL_CONTAINER_PORT}/tcp"
SCRIPT_MOUNT_TARGET = "/docker-entrypoint-initdb.d/schema.sql"
DISCOVERY_LABEL = "com.github.virgild.mysqlbox"

MYSQLD_ARGS = [
    "--general-log=1",
    "--general-log-file=/var/lib/mysql/general-log.log",
]


class ReadinessState(Enum):
    """States of the readiness poller."""

    POLLING = "polling"
    READY = "ready"
    TIMED_OUT = "timed_out"
    EXITED_EARLY = "exited_early"

    @property
    def terminal(self) -> bool:
        return self is not ReadinessState.POLLING


@dataclass
class ContainerSpec:
    """Everything the runtime needs to create a MySQL container."""

    image: str
    name: str
    environment: Dict[str, str] = field(default_factory=dict)
    command: List[str] = field(default_factory=lambda: list(MYSQLD_ARGS))
    labels: Dict[str, str] = field(default_factory=lambda: {DISCOVERY_LABEL: "1"})
    host_port: int = 0
    script_path: Optional[str] = None

    @classmethod
    def for_mysql(
        cls,
        image: str,
        name: str,
        database: str,
        root_password: str = "",
        host_port: int = 0,
        script_path: Optional[str] = None,
    ) -> "ContainerSpec":
        """Build the spec for a MySQL server container."""
        environment = {"MYSQL_DATABASE": database}
        if root_password:
            environment["MYSQL_ROOT_PASSWORD"] = root_password
        else:
            environment["MYSQL_ALLOW_EMPTY_PASSWORD"] = "1"

        return cls(
            image=image,
            name=name,
            environment=environment,
            host_port=host_port,
            script_path=script_path,
        )

    def environment_list(self) -> List[str]:
        """Environment in the KEY=value form the engine expects."""
        return [f"{key}={value}" for key, value in self.environment.items()]


@dataclass
class ReadinessResult:
    """Outcome of a readiness poll."""

    state: ReadinessState
    attempts: int = 0
    elapsed: float = 0.0
    last_error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def ready(self) -> bool:
        return self.state is ReadinessState.READY

    def get_summary(self) -> str:
        """Get a summary string for the readiness result."""
        status = "READY" if self.ready else self.state.value.upper()
        return f"{status} after {self.attempts} probe(s) ({self.elapsed:.1f}s)"


@dataclass
class CleanResult:
    """Result of a table cleaning pass."""

    truncated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed

    def get_summary(self) -> str:
        """Get a summary string for the cleaning pass."""
        summary = f"truncated {len(self.truncated)} table(s)"
        if self.skipped:
            summary += f", skipped {len(self.skipped)}"
        if self.failed:
            summary += f", {len(self.failed)} failed: {', '.join(sorted(self.failed))}"
        return summary
