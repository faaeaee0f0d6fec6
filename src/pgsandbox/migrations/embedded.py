"""In-process SQL migrations over psycopg."""

import os
from pathlib import Path
from typing import List, Optional

import psycopg

from pgsandbox.errors import MigrationError
from pgsandbox.models import ConnectionConfiguration, MigrationConfig, Scope
from pgsandbox.services.connection import find_connection
from pgsandbox.services.filesystem import is_under

from .engine import MIGRATION_FILE, Migrate, MigrationSource, NoChange, PostgresDriver


def parse_migration_version(migration_file: str) -> int:
    """Returns ``N`` from a path whose basename is ``<N>_description.ext``."""
    base = os.path.basename(migration_file)
    prefix = base.split("_", 1)[0]
    try:
        return int(prefix)
    except ValueError as exc:
        raise MigrationError(f"Cannot parse migration number from '{base}'") from exc


class EmbeddedMigrator:
    """Applies ``<N>_name.up.sql``/``.down.sql`` files with the native connection."""

    def __init__(self, config: MigrationConfig, logger, connect=psycopg.connect):
        self.config = config
        self.logger = logger
        self.connect = connect

        self.container_connection: Optional[str] = None
        self.native_connection: Optional[str] = None

    def init(self, configurations: List[ConnectionConfiguration]):
        self.container_connection = find_connection(configurations, Scope.CONTAINER)
        self.native_connection = find_connection(configurations, Scope.NATIVE)

    @property
    def migration_uri(self) -> str:
        return Path(os.path.abspath(self.config.migration_dir)).as_uri()

    def accepts(self, path: str) -> bool:
        """Only ``<N>_name[.up|.down].sql`` files inside the migrations directory."""
        return is_under(path, self.config.migration_dir) and bool(
            MIGRATION_FILE.match(os.path.basename(path))
        )

    def _has_migrations(self) -> bool:
        if os.path.isdir(self.config.migration_dir):
            return True
        self.logger.debug("No migration folder found at %s", self.config.migration_dir)
        return False

    def _open(self):
        if self.native_connection is None:
            raise MigrationError("Migration manager used before init().")
        return self.connect(self.native_connection, autocommit=True)

    def apply(self):
        if not self._has_migrations():
            return

        source = MigrationSource.from_uri(self.migration_uri)
        with self._open() as conn:
            migrate = Migrate(source, PostgresDriver(conn), self.logger)
            try:
                applied = migrate.up()
            except NoChange:
                self.logger.info("Schema of %s is up to date", self.config.database_name)
                return
        self.logger.info("Applied %s migration(s) to %s", applied, self.config.database_name)

    def update(self, migration_file: str):
        """Re-runs the migration named by ``migration_file``.

        The version is forced to that migration, stepped down once and up
        once. When later migrations were already recorded, the version is
        forced back to where it was without re-running them, so objects the
        down script dropped and later migrations changed are not restored.
        """
        if not self._has_migrations():
            return

        version = parse_migration_version(migration_file)
        self.logger.info("Applying migration: %s", os.path.basename(migration_file))

        source = MigrationSource.from_uri(self.migration_uri)
        if version not in source:
            raise MigrationError(f"No migration with version {version} in {self.config.migration_dir}")

        with self._open() as conn:
            migrate = Migrate(source, PostgresDriver(conn), self.logger)
            recorded = migrate.version()

            migrate.force(version)
            migrate.steps(-1)
            migrate.steps(1)

            if recorded is not None and recorded > version:
                self.logger.warning(
                    "Version %s recorded again without re-running the migrations after %s.",
                    recorded,
                    version,
                )
                migrate.force(recorded)
