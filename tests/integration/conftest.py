"""
Integration test configuration for MySQLBox.

These tests start real MySQL containers and are skipped when no Docker
engine is reachable. The session box provided by the mysqlbox pytest
plugin is configured here with the test schema.
"""

from pathlib import Path

import docker
import pytest
import requests
from docker.errors import DockerException

from mysqlbox.config import MySQLBoxConfig
from mysqlbox.data import SQLData

TESTDATA_DIR = Path(__file__).parent.parent / "testdata"


def docker_available() -> bool:
    """Check whether a Docker engine answers on DOCKER_HOST or the default socket."""
    try:
        client = docker.from_env()
        try:
            return client.ping()
        finally:
            client.close()
    except (DockerException, requests.exceptions.RequestException):
        return False


@pytest.fixture(scope="session", autouse=True)
def require_docker():
    if not docker_available():
        pytest.skip("Docker engine not available")


@pytest.fixture(scope="session")
def mysqlbox_config() -> MySQLBoxConfig:
    """Session box with the test schema; categories survive clean_all_tables()."""
    return MySQLBoxConfig(
        initial_sql=SQLData.from_file(TESTDATA_DIR / "schema.sql"),
        do_not_clean_tables=["categories"],
    )
