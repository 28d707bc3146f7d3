"""
pytest fixtures for MySQLBox

Registered through the pytest11 entry point. Override mysqlbox_config in a
conftest.py to change the image, initial script or excluded tables:

    @pytest.fixture(scope="session")
    def mysqlbox_config():
        return MySQLBoxConfig(initial_sql=SQLData.from_file("schema.sql"))
"""

from collections.abc import Generator

import pytest

from .box import MySQLBox
from .config import MySQLBoxConfig, MySQLBoxSettings


@pytest.fixture(scope="session")
def mysqlbox_settings() -> MySQLBoxSettings:
    """Settings read from MYSQLBOX_* environment variables."""
    return MySQLBoxSettings()


@pytest.fixture(scope="session")
def mysqlbox_config() -> MySQLBoxConfig:
    """Configuration of the session MySQL container."""
    return MySQLBoxConfig()


@pytest.fixture(scope="session")
def mysqlbox(
    mysqlbox_config: MySQLBoxConfig, mysqlbox_settings: MySQLBoxSettings
) -> Generator[MySQLBox, None, None]:
    """
    A running MySQLBox shared by the session.

    Yields:
        Started box, stopped when the session ends
    """
    box = MySQLBox(mysqlbox_config, mysqlbox_settings).start()
    try:
        yield box
    finally:
        box.stop()


@pytest.fixture
def clean_mysqlbox(mysqlbox: MySQLBox) -> MySQLBox:
    """The session box with all tables truncated before the test."""
    mysqlbox.clean_all_tables()
    return mysqlbox
