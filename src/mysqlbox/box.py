"""
MySQLBox: a MySQL server in a Docker container

MySQLBox ties the container controller, the log multiplexer, the readiness
poller, the connection manager and the table cleaner into a single handle.
A box is either running, with every resource acquired, or not running, in
which case every operation raises InstanceAbsentError.
"""

import io
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy.engine import Engine

from .config import MySQLBoxConfig, MySQLBoxSettings
from .container_logs import LogMultiplexer
from .container_runtime import ContainerController
from .data import ScriptArtifact
from .database_operations import ConnectionManager
from .exceptions import InstanceAbsentError, MySQLBoxError
from .logging_config import create_driver_logger, mask_sensitive_data, release_driver_logger
from .models import CleanResult, ContainerSpec
from .readiness import ReadinessPoller
from .table_cleaner import TableCleaner

logger = logging.getLogger(__name__)


@dataclass
class RunningInstance:
    """Resources owned by a started box. Released once, by stop()."""

    container_id: str
    container_name: str
    database: str
    port: int
    dsn: str
    engine: Engine
    root_password: str
    connections: ConnectionManager
    cleaner: TableCleaner
    logs: LogMultiplexer
    exited: threading.Event
    driver_logger: logging.Logger
    driver_log: io.StringIO
    script: Optional[ScriptArtifact] = None


class MySQLBox:
    """
    A MySQL server running in a Docker container.

    Usage:
        with mysqlbox.start(MySQLBoxConfig(initial_sql=SQLData.from_file("schema.sql"))) as box:
            with box.engine.connect() as conn:
                ...
    """

    def __init__(
        self,
        config: Optional[MySQLBoxConfig] = None,
        settings: Optional[MySQLBoxSettings] = None,
        controller: Optional[ContainerController] = None,
    ):
        self.settings = settings
        self.config = (config or MySQLBoxConfig()).with_defaults(settings)
        self._controller = controller
        self._owns_controller = controller is None
        self._instance: Optional[RunningInstance] = None

    def __repr__(self) -> str:
        state = "running" if self._instance else "stopped"
        return f"MySQLBox(name={self.config.container_name!r}, {state})"

    def __enter__(self) -> "MySQLBox":
        if self._instance is None:
            self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._instance is not None:
            self.stop()

    @property
    def is_running(self) -> bool:
        return self._instance is not None

    def _require(self, operation: str) -> RunningInstance:
        if self._instance is None:
            raise InstanceAbsentError(operation)
        return self._instance

    def _get_controller(self) -> ContainerController:
        if self._controller is None:
            docker_host = self.settings.docker_host if self.settings else None
            self._controller = ContainerController.from_env(docker_host)
        return self._controller

    def _release_controller(self) -> None:
        """Close a controller the box connected itself."""
        if self._owns_controller and self._controller is not None:
            self._controller.close()
            self._controller = None

    def start(self) -> "MySQLBox":
        """
        Create the container and wait until MySQL accepts connections.

        On failure everything acquired so far is released before the error
        propagates.
        """
        if self._instance is not None:
            raise MySQLBoxError("mysqlbox is already running", operation="start")

        cfg = self.config
        logger.info(f"Starting MySQLBox {cfg.container_name} ({cfg.image}, database {cfg.database})")
        logger.debug(f"MySQLBox config: {cfg.mask_sensitive_values()}")
        start_time = time.time()

        controller: Optional[ContainerController] = None
        script: Optional[ScriptArtifact] = None
        container_id: Optional[str] = None
        started = False
        logs: Optional[LogMultiplexer] = None
        connections: Optional[ConnectionManager] = None
        driver_logger: Optional[logging.Logger] = None

        try:
            if cfg.initial_sql is not None:
                script = ScriptArtifact.materialize(cfg.initial_sql)

            controller = self._get_controller()
            spec = ContainerSpec.for_mysql(
                image=cfg.image,
                name=cfg.container_name,
                database=cfg.database,
                root_password=cfg.root_password,
                host_port=cfg.mysql_port,
                script_path=script.path if script else None,
            )
            container_id = controller.create(spec)
            controller.start(container_id)
            started = True

            exited = threading.Event()
            logs = LogMultiplexer(
                controller.open_log_stream(container_id),
                stdout=cfg.stdout,
                stderr=cfg.stderr,
                logged_errors=cfg.logged_errors,
                exited=exited,
                name=cfg.container_name,
            )
            logs.start()

            port = controller.resolve_port(container_id)

            driver_logger, driver_log = create_driver_logger(cfg.container_name)
            connections = ConnectionManager(
                port, cfg.root_password, driver_logger=driver_logger
            )
            engine, dsn = connections.connect(cfg.database)

            ReadinessPoller(lambda: connections.ping(engine), exited).wait()

        except BaseException as e:
            logger.error(f"MySQLBox {cfg.container_name} failed to start: {e}")
            _release_partial(
                controller, container_id, started, logs, connections, driver_logger, script
            )
            self._release_controller()
            raise

        self._instance = RunningInstance(
            container_id=container_id,
            container_name=cfg.container_name,
            database=cfg.database,
            port=port,
            dsn=dsn,
            engine=engine,
            root_password=cfg.root_password,
            connections=connections,
            cleaner=TableCleaner(engine, cfg.database, cfg.do_not_clean_tables),
            logs=logs,
            exited=exited,
            driver_logger=driver_logger,
            driver_log=driver_log,
            script=script,
        )

        logger.info(
            mask_sensitive_data(
                f"MySQLBox {cfg.container_name} ready at {dsn} in {time.time() - start_time:.1f}s"
            )
        )
        return self

    def stop(self) -> None:
        """
        Stop the container and release everything the box holds.

        Stop and removal errors are raised after the local resources have
        been released; the box is not running afterwards either way.
        """
        instance = self._require("stop")
        self._instance = None
        controller = self._get_controller()

        logger.info(f"Stopping MySQLBox {instance.container_name}")
        try:
            controller.stop(instance.container_id)
            controller.wait_removed(instance.container_id)
        finally:
            instance.logs.close()
            _report_log_error(instance.logs, instance.container_name)
            instance.connections.dispose()
            release_driver_logger(instance.driver_logger)
            if instance.script is not None:
                instance.script.remove()
            self._release_controller()

        logger.info(f"MySQLBox {instance.container_name} stopped")

    @property
    def engine(self) -> Engine:
        """Pooled engine connected to the configured database."""
        return self._require("engine").engine

    @property
    def dsn(self) -> str:
        """Connection URL of the configured database."""
        return self._require("dsn").dsn

    @property
    def container_name(self) -> str:
        return self._require("container_name").container_name

    @property
    def container_id(self) -> str:
        return self._require("container_id").container_id

    @property
    def port(self) -> int:
        """Host port bound to the MySQL port."""
        return self._require("port").port

    @property
    def db_addr(self) -> str:
        """host:port of the MySQL server."""
        return self._require("db_addr").connections.db_addr

    @property
    def root_password(self) -> str:
        return self._require("root_password").root_password

    @property
    def driver_log(self) -> str:
        """Connection messages logged for this box."""
        return self._require("driver_log").driver_log.getvalue()

    def connect_db(self, database: str) -> Tuple[Engine, str]:
        """
        Open a pooled engine on another database of the same server.

        Returns:
            Tuple of (engine, dsn)
        """
        return self._require("connect_db").connections.connect(database)

    def clean_all_tables(self) -> CleanResult:
        """Truncate all tables except those in do_not_clean_tables."""
        return self._require("clean_all_tables").cleaner.clean_all()

    def clean_tables(self, *tables: str) -> CleanResult:
        """Truncate the given tables. Failing tables are logged and skipped."""
        return self._require("clean_tables").cleaner.clean_tables(*tables)


def start(
    config: Optional[MySQLBoxConfig] = None,
    settings: Optional[MySQLBoxSettings] = None,
) -> MySQLBox:
    """Start a MySQLBox and return it once MySQL accepts connections."""
    return MySQLBox(config, settings).start()


def _release_partial(
    controller: Optional[ContainerController],
    container_id: Optional[str],
    started: bool,
    logs: Optional[LogMultiplexer],
    connections: Optional[ConnectionManager],
    driver_logger: Optional[logging.Logger],
    script: Optional[ScriptArtifact],
) -> None:
    """Release whatever a failed start acquired. Errors are logged, not raised."""
    if controller is not None and container_id is not None:
        try:
            if started:
                controller.stop(container_id)
                controller.wait_removed(container_id)
            else:
                controller.remove(container_id)
        except MySQLBoxError as e:
            logger.warning(f"Cleanup of container {container_id[:12]} failed: {e.get_detailed_message()}")

    if logs is not None:
        logs.close()
        _report_log_error(logs, container_id[:12])
    if connections is not None:
        connections.dispose()
    if driver_logger is not None:
        release_driver_logger(driver_logger)
    if script is not None:
        script.remove()


def _report_log_error(logs: LogMultiplexer, name: str) -> None:
    if logs.error is not None:
        logger.warning(f"Log stream of {name} failed: {logs.error.get_detailed_message()}")
