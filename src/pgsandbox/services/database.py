"""Database readiness and catalog queries for pgsandbox."""

import time
from typing import List, Optional

import psycopg

from pgsandbox.errors import DatabaseNotReadyError
from pgsandbox.errors_catalog import actionable_error


class DatabaseService:
    """Talks to PostgreSQL directly over psycopg."""

    CONNECT_TIMEOUT_SECONDS = 5

    APPLICATION_TABLES_QUERY = """
        SELECT tablename
        FROM pg_catalog.pg_tables
        WHERE schemaname = 'public'
        AND tablename NOT LIKE 'pg_%%'
        AND tablename NOT LIKE 'sql_%%'
        AND tablename <> %s
        ORDER BY tablename
    """

    TABLE_EXISTS_QUERY = """
        SELECT EXISTS (
            SELECT FROM pg_catalog.pg_tables
            WHERE schemaname = 'public'
            AND tablename = %s
        )
    """

    def __init__(self, logger, console, connect=psycopg.connect):
        self.logger = logger
        self.console = console
        self.connect = connect

    def _open(self, connection: str):
        return self.connect(connection, connect_timeout=self.CONNECT_TIMEOUT_SECONDS, autocommit=True)

    def ping(self, connection: str):
        with self._open(connection) as conn:
            conn.execute("SELECT 1")

    def wait_for_ready(
        self,
        connection: str,
        max_retries: int = 20,
        interval_seconds: float = 3.0,
        container_name: str = "",
    ) -> int:
        """Polls ``SELECT 1`` until it succeeds. Returns the number of attempts used."""
        self.console.print("[yellow]Waiting for database to be ready...[/yellow]")

        last_error: Optional[Exception] = None
        for attempt in range(1, max_retries + 1):
            try:
                self.ping(connection)
            except psycopg.Error as exc:
                last_error = exc
                self.logger.debug(
                    "Database not ready (attempt %s/%s): %s", attempt, max_retries, exc
                )
                if attempt < max_retries:
                    time.sleep(interval_seconds)
                continue

            self.console.print("[green]Database is ready.[/green]")
            return attempt

        message = actionable_error(
            "database_not_ready", attempts=str(max_retries), container=container_name or "<container>"
        )
        if last_error is not None:
            message = f"{message}\nLast error: {last_error}"
        raise DatabaseNotReadyError(message)

    def list_application_tables(self, connection: str, version_table: str) -> List[str]:
        with self._open(connection) as conn:
            rows = conn.execute(self.APPLICATION_TABLES_QUERY, (version_table,)).fetchall()
        return [row[0] for row in rows]

    def table_exists(self, connection: str, table: str) -> bool:
        with self._open(connection) as conn:
            row = conn.execute(self.TABLE_EXISTS_QUERY, (table,)).fetchone()
        return bool(row and row[0])

    def fetch_column(self, connection: str, query: str) -> List[str]:
        with self._open(connection) as conn:
            rows = conn.execute(query).fetchall()
        return [str(row[0]) for row in rows]
