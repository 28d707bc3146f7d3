"""
Database connections for MySQLBox

Builds the connection URLs for a running container and opens pooled
SQLAlchemy engines on them through the PyMySQL driver. Other databases
created on the same server (for instance by the initial script) only need
another URL with the same host, port and password.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine

from .logging_config import mask_sensitive_data

logger = logging.getLogger(__name__)

DRIVER_NAME = "mysql+pymysql"
ROOT_USER = "root"
LOOPBACK = "127.0.0.1"
CONNECT_TIMEOUT = 5


class ConnectionManager:
    """Opens and tracks connections to one MySQL server."""

    def __init__(
        self,
        port: int,
        root_password: str = "",
        host: str = LOOPBACK,
        driver_logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            port: Host port bound to the MySQL port
            root_password: Password of the MySQL root user
            host: Host the port is bound on
            driver_logger: Logger receiving connection messages of this server
        """
        self.port = port
        self.root_password = root_password
        self.host = host
        self.log = driver_logger or logger
        self._engines: List[Engine] = []

    @property
    def db_addr(self) -> str:
        """host:port of the MySQL server."""
        return f"{self.host}:{self.port}"

    def url(self, database: str) -> URL:
        """
        Connection URL for database as root.

        PyMySQL returns DATE/DATETIME/TIMESTAMP columns as datetime objects.
        """
        return URL.create(
            DRIVER_NAME,
            username=ROOT_USER,
            password=self.root_password or None,
            host=self.host,
            port=self.port,
            database=database,
            query={"charset": "utf8mb4"},
        )

    def dsn(self, database: str) -> str:
        """Connection URL for database as a string, password included."""
        return self.url(database).render_as_string(hide_password=False)

    def connect(self, database: str) -> Tuple[Engine, str]:
        """
        Open a pooled engine on database.

        The engine connects lazily, so this succeeds even when the database
        does not exist; the first query reports that.

        Returns:
            Tuple of (engine, dsn)
        """
        engine = create_engine(
            self.url(database),
            pool_pre_ping=True,
            connect_args={"connect_timeout": CONNECT_TIMEOUT},
        )
        self._engines.append(engine)

        dsn = self.dsn(database)
        self.log.info(mask_sensitive_data(f"Opened connection pool for {dsn}"))
        return engine, dsn

    def ping(self, engine: Engine) -> None:
        """Run a trivial query; raises when the server cannot be reached."""
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            self.log.debug(f"ping {self.db_addr} failed: {e}")
            raise

    def dispose(self) -> None:
        """Close all pooled connections opened by this manager."""
        for engine in self._engines:
            try:
                engine.dispose()
            except Exception as e:
                self.log.warning(f"Failed to dispose engine {engine.url.database}: {e}")
        self._engines.clear()
