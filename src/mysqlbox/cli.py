"""
Command-line interface for MySQLBox

Starts a throwaway MySQL container for manual testing and lists or removes
containers left behind by interrupted test runs (found by their label).
"""

import sys
import time
from pathlib import Path
from typing import Optional

import click

from . import __author__, __version__
from .box import MySQLBox
from .config import MySQLBoxConfig, MySQLBoxSettings, load_settings
from .container_runtime import ContainerController
from .data import SQLData
from .exceptions import MySQLBoxError
from .logging_config import setup_logging
from .models import DISCOVERY_LABEL


@click.group()
@click.option(
    "--env-file",
    type=click.Path(exists=True, path_type=Path),
    help="Path to a .env settings file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Set logging level",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--log-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for log files (enables file logging)",
)
@click.pass_context
def cli(
    ctx: click.Context,
    env_file: Optional[Path],
    log_level: Optional[str],
    verbose: bool,
    log_dir: Optional[Path],
) -> None:
    """
    MySQLBox: disposable MySQL servers in Docker containers
    """
    settings = load_settings(
        env_file=str(env_file) if env_file else None,
        cli_overrides={
            "log_level": log_level.upper() if log_level else None,
            "verbose": verbose or None,
            "log_dir": str(log_dir) if log_dir else None,
            "enable_file_logging": True if log_dir else None,
        },
    )

    # --verbose overrides the default level but not an explicit one
    level = settings.log_level if log_level or not settings.verbose else None
    setup_logging(
        log_dir=settings.log_dir,
        verbose=settings.verbose,
        log_level=level,
        enable_file_logging=settings.enable_file_logging,
    )

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


def _controller(settings: MySQLBoxSettings) -> ContainerController:
    try:
        return ContainerController.from_env(settings.docker_host)
    except MySQLBoxError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--image", default=None, help="MySQL image (default: mysql:8)")
@click.option("--database", default="", help="Database to create (default: testing)")
@click.option("--name", "container_name", default="", help="Container name")
@click.option("--password", "root_password", default="", help="MySQL root password")
@click.option("--port", "mysql_port", default=0, type=int, help="Host port (default: any free port)")
@click.option(
    "--init-sql",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="SQL script run when the server starts",
)
@click.option("--show-logs", is_flag=True, help="Copy the container logs to this terminal")
@click.pass_context
def start(
    ctx: click.Context,
    image: Optional[str],
    database: str,
    container_name: str,
    root_password: str,
    mysql_port: int,
    init_sql: Optional[Path],
    show_logs: bool,
) -> None:
    """Start a MySQL container and keep it running until Ctrl-C."""
    settings: MySQLBoxSettings = ctx.obj["settings"]

    config = MySQLBoxConfig(
        image=image or "",
        database=database,
        container_name=container_name,
        root_password=root_password,
        mysql_port=mysql_port,
        initial_sql=SQLData.from_file(init_sql) if init_sql else None,
        stdout=sys.stdout.buffer if show_logs else None,
        stderr=sys.stderr.buffer if show_logs else None,
    )
    box = MySQLBox(config, settings)

    click.echo(f"🚀 Starting {box.config.container_name} ({box.config.image})...")
    try:
        box.start()
    except MySQLBoxError as e:
        click.echo(f"❌ {e.get_detailed_message()}", err=True)
        sys.exit(1)

    click.echo("✅ MySQL is ready")
    click.echo(f"   Address:  {box.db_addr}")
    click.echo(f"   Database: {box.config.database}")
    click.echo(f"   DSN:      {box.dsn}")
    click.echo("Press Ctrl-C to stop")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\n🛑 Stopping...")

    try:
        box.stop()
    except MySQLBoxError as e:
        click.echo(f"❌ {e.get_detailed_message()}", err=True)
        sys.exit(1)
    click.echo("✅ Stopped")


@cli.command(name="list")
@click.pass_context
def list_containers(ctx: click.Context) -> None:
    """List containers created by MySQLBox."""
    controller = _controller(ctx.obj["settings"])
    try:
        containers = controller.list_containers()
    except MySQLBoxError as e:
        click.echo(f"❌ {e.get_detailed_message()}", err=True)
        sys.exit(1)
    finally:
        controller.close()

    if not containers:
        click.echo("No MySQLBox containers found")
        return

    click.echo(f"MySQLBox containers (label {DISCOVERY_LABEL}):")
    for container in containers:
        port = f" port {container['host_port']}" if container["host_port"] else ""
        click.echo(
            f"  {container['id']}  {container['name']}  {container['image']}  "
            f"{container['state']}{port}"
        )


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def cleanup(ctx: click.Context, yes: bool) -> None:
    """Remove all containers created by MySQLBox."""
    controller = _controller(ctx.obj["settings"])
    try:
        containers = controller.list_containers()

        if not containers:
            click.echo("No MySQLBox containers found")
            return

        click.echo(f"Found {len(containers)} MySQLBox container(s)")
        if not yes and not click.confirm("Remove them?"):
            click.echo("Cleanup cancelled")
            return

        removed = controller.remove_containers()
    except MySQLBoxError as e:
        click.echo(f"❌ {e.get_detailed_message()}", err=True)
        sys.exit(1)
    finally:
        controller.close()

    click.echo(f"🗑️  Removed {len(removed)} container(s)")
    if len(removed) < len(containers):
        click.echo("⚠️  Some containers could not be removed", err=True)
        sys.exit(1)


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"MySQLBox version {__version__}")
    click.echo(f"Author: {__author__}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
