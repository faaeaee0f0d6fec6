"""Alembic migrations run from a short-lived helper container."""

import os
import time
from typing import List, Optional

import psycopg

from pgsandbox.constants import (
    ALEMBIC_CONFIG,
    ALEMBIC_VERSION_TABLE,
    ALEMBIC_WORKDIR,
    DEFAULT_ALEMBIC_IMAGE,
)
from pgsandbox.errors import CommandError, MigrationError, UncommittedTransactionError
from pgsandbox.errors_catalog import actionable_error
from pgsandbox.models import ConnectionConfiguration, MigrationConfig, Scope
from pgsandbox.services.connection import find_connection
from pgsandbox.services.docker_runtime import DockerRunner, parse_image
from pgsandbox.services.filesystem import is_under


class ContainerizedMigrator:
    """Runs the alembic CLI against the database from a helper container.

    The helper reaches the database through the container-scope connection,
    while table checks afterwards go through the native one. Alembic's
    driver has been seen leaving its transaction open, which hides freshly
    created tables from other sessions; ``apply`` commits and terminates
    such sessions before checking, and reports separately when the version
    table exists but no application table ever shows up.
    """

    TABLE_CHECK_RETRIES = 12
    TABLE_CHECK_DELAY_SECONDS = 5.0

    ACTIVE_TRANSACTIONS_QUERY = (
        "SELECT pid, state, query, xact_start, now() - xact_start AS duration "
        "FROM pg_stat_activity WHERE state LIKE '%transaction%';"
    )
    TERMINATE_IDLE_QUERY = (
        "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
        "WHERE state = 'idle in transaction' AND pid <> pg_backend_pid();"
    )
    VERSIONS_QUERY = f"SELECT version_num FROM {ALEMBIC_VERSION_TABLE}"

    def __init__(
        self,
        config: MigrationConfig,
        logger,
        console,
        command_runner,
        database,
        helper_name: str,
        runner_factory=DockerRunner,
    ):
        self.config = config
        self.logger = logger
        self.console = console
        self.command_runner = command_runner
        self.database = database
        self.helper_name = helper_name
        self.runner_factory = runner_factory

        self.container_connection: Optional[str] = None
        self.native_connection: Optional[str] = None

    def init(self, configurations: List[ConnectionConfiguration]):
        self.container_connection = find_connection(configurations, Scope.CONTAINER)
        self.native_connection = find_connection(configurations, Scope.NATIVE)

    def image(self) -> str:
        if self.config.image_override is None:
            return DEFAULT_ALEMBIC_IMAGE
        name, tag = parse_image(self.config.image_override)
        return f"{name}:{tag}"

    @property
    def versions_dir(self) -> str:
        return self.config.version_dir_override or os.path.join(self.config.migration_dir, "versions")

    def accepts(self, path: str) -> bool:
        """Only revision scripts; alembic's own ``__pycache__`` writes are ignored."""
        if not path.endswith(".py") or not is_under(path, self.versions_dir):
            return False
        relative = os.path.relpath(os.path.abspath(path), os.path.abspath(self.versions_dir))
        return "__pycache__" not in relative.split(os.sep)

    def _has_migrations(self) -> bool:
        if os.path.isdir(self.config.migration_dir):
            return True
        self.logger.debug("No migration folder found at %s", self.config.migration_dir)
        return False

    def _build_runner(self) -> DockerRunner:
        if self.container_connection is None:
            raise MigrationError("Migration manager used before init().")

        self.logger.debug(
            "Migrations directory %s contains: %s",
            self.config.migration_dir,
            sorted(os.listdir(self.config.migration_dir)),
        )

        runner = self.runner_factory(self.helper_name, self.command_runner, self.logger, self.console)
        runner.with_mount(os.path.abspath(self.config.migration_dir), ALEMBIC_WORKDIR)
        if self.config.version_dir_override is not None:
            runner.with_mount(
                os.path.abspath(self.config.version_dir_override), f"{ALEMBIC_WORKDIR}/versions"
            )
        runner.with_workdir(ALEMBIC_WORKDIR)
        runner.with_pause()
        runner.with_host_alias()
        runner.with_environment_variables(f"DATABASE_URL={self.container_connection}")
        return runner

    def _forward(self, line: str):
        self.logger.info("[alembic] %s", line)

    def _alembic(self, runner, *args: str):
        runner.new_process("alembic", "-c", ALEMBIC_CONFIG, *args).with_output(self._forward).run()

    def _diagnostic(self, runner, *args: str):
        try:
            self._alembic(runner, *args)
        except CommandError as exc:
            self.logger.warning("alembic %s failed: %s", " ".join(args), exc)

    def _psql(self, runner, query: str):
        try:
            runner.new_process("psql", self.container_connection, "-c", query).with_output(
                self.logger.debug
            ).run()
        except CommandError as exc:
            self.logger.warning("psql cleanup query failed: %s", exc)

    def _cleanup_transactions(self, runner):
        self.logger.debug("Checking for open transactions")
        self._psql(runner, self.ACTIVE_TRANSACTIONS_QUERY)
        self._psql(runner, "COMMIT;")
        self._psql(runner, self.TERMINATE_IDLE_QUERY)

    def _shutdown(self, runner):
        try:
            runner.shutdown()
        except CommandError as exc:
            self.logger.warning("Cannot shut down helper container %s: %s", runner.name, exc)

    def apply(self):
        if not self._has_migrations():
            return

        runner = self._build_runner()
        try:
            runner.init_and_start(self.image())

            self._diagnostic(runner, "current")
            self.console.print("[blue]Running alembic upgrade head...[/blue]")
            try:
                self._alembic(runner, "upgrade", "head")
            except CommandError as exc:
                raise MigrationError(f"alembic upgrade failed: {exc}") from exc

            self._cleanup_transactions(runner)
            self._diagnostic(runner, "current")
            self._verify_tables(runner)
        finally:
            self._shutdown(runner)

    def _verify_tables(self, runner):
        tables: List[str] = []
        last_error: Optional[Exception] = None

        for attempt in range(1, self.TABLE_CHECK_RETRIES + 1):
            if attempt > 1:
                time.sleep(self.TABLE_CHECK_DELAY_SECONDS)
            try:
                tables = self.database.list_application_tables(
                    self.native_connection, ALEMBIC_VERSION_TABLE
                )
                last_error = None
            except psycopg.Error as exc:
                self.logger.debug("Table check failed (attempt %s): %s", attempt, exc)
                last_error = exc
                continue
            if tables:
                break
            self.logger.debug(
                "No application tables yet (attempt %s/%s)", attempt, self.TABLE_CHECK_RETRIES
            )

        if tables:
            self.logger.info("Tables in database: %s", ", ".join(tables))
            return

        waited = int(self.TABLE_CHECK_RETRIES * self.TABLE_CHECK_DELAY_SECONDS)
        has_version_table = False
        try:
            has_version_table = self.database.table_exists(self.native_connection, ALEMBIC_VERSION_TABLE)
        except psycopg.Error as exc:
            self.logger.debug("Cannot look up %s: %s", ALEMBIC_VERSION_TABLE, exc)

        if has_version_table:
            self._cleanup_transactions(runner)
            versions: List[str] = []
            try:
                versions = self.database.fetch_column(self.native_connection, self.VERSIONS_QUERY)
            except psycopg.Error as exc:
                self.logger.debug("Cannot read recorded versions: %s", exc)
            raise UncommittedTransactionError(
                actionable_error(
                    "uncommitted_transaction",
                    table=ALEMBIC_VERSION_TABLE,
                    versions=", ".join(versions) or "none",
                    waited=str(waited),
                ),
                versions=versions,
            )

        if last_error is not None:
            raise MigrationError(
                f"Failed to check tables after {self.TABLE_CHECK_RETRIES} attempts "
                f"(waited {waited}s): {last_error}"
            ) from last_error
        raise MigrationError(
            actionable_error(
                "migration_incomplete", waited=str(waited), attempts=str(self.TABLE_CHECK_RETRIES)
            )
        )

    def update(self, migration_file: str):
        """Re-runs the latest revision: one step down, one step up."""
        if not self._has_migrations():
            return

        self.logger.info("Re-applying alembic head after change to %s", os.path.basename(migration_file))
        runner = self._build_runner()
        try:
            runner.init_and_start(self.image())
            try:
                self._alembic(runner, "downgrade", "-1")
                self._alembic(runner, "upgrade", "+1")
            except CommandError as exc:
                raise MigrationError(f"alembic re-apply failed: {exc}") from exc
        finally:
            self._shutdown(runner)
