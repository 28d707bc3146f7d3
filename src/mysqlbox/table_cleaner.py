"""
Table cleaning for MySQLBox

TableCleaner empties tables between tests. clean_all() stops at the first
failing table, since a failure there usually means the whole database is
in a bad state. clean_tables() works through an explicit list and only
records failures.
"""

import logging
from typing import FrozenSet, Iterable, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .exceptions import TableCleanError
from .models import CleanResult

logger = logging.getLogger(__name__)

TABLES_QUERY = "SELECT table_name FROM information_schema.tables WHERE table_schema = :schema"


def quote_identifier(name: str) -> str:
    """Quote a MySQL identifier with backticks."""
    return "`" + name.replace("`", "``") + "`"


class TableCleaner:
    """Truncates tables of one database."""

    def __init__(
        self,
        engine: Engine,
        database: str,
        do_not_clean_tables: Optional[Iterable[str]] = None,
    ):
        self.engine = engine
        self.database = database
        self.do_not_clean_tables: FrozenSet[str] = frozenset(do_not_clean_tables or ())

    def list_tables(self) -> List[str]:
        """Tables currently in the database. Never cached."""
        with self.engine.connect() as conn:
            rows = conn.execute(text(TABLES_QUERY), {"schema": self.database})
            return [row[0] for row in rows]

    def truncate(self, table: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(text(f"TRUNCATE TABLE {quote_identifier(table)}"))

    def clean_all(self) -> CleanResult:
        """
        Truncate every table except the excluded ones.

        Raises:
            TableCleanError: on the first failure; remaining tables are left as they are
        """
        result = CleanResult()

        try:
            tables = self.list_tables()
        except SQLAlchemyError as e:
            raise TableCleanError(
                f"could not list tables: {e}",
                operation="clean_all_tables",
                context={"database": self.database},
            ) from e

        for table in tables:
            if table in self.do_not_clean_tables:
                result.skipped.append(table)
                continue

            try:
                self.truncate(table)
            except SQLAlchemyError as e:
                raise TableCleanError(
                    f"truncate table failed ({table}): {e}",
                    operation="clean_all_tables",
                    context={"database": self.database, "table": table},
                ) from e
            result.truncated.append(table)

        logger.debug(f"clean_all_tables on {self.database}: {result.get_summary()}")
        return result

    def clean_tables(self, *tables: str) -> CleanResult:
        """
        Truncate the given tables, ignoring the exclusion list.

        Failures are logged and recorded in the result; the remaining
        tables are still truncated.
        """
        result = CleanResult()

        for table in tables:
            try:
                self.truncate(table)
            except SQLAlchemyError as e:
                logger.warning(f"truncate table failed ({table}): {e}")
                result.failed[table] = str(e)
                continue
            result.truncated.append(table)

        logger.debug(f"clean_tables on {self.database}: {result.get_summary()}")
        return result
